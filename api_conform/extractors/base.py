"""Extraction strategy protocol and helpers shared by the built-in strategies."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Protocol

from api_conform.models import Endpoint, Parameter, SchemaRef
from api_conform.paths import placeholder_names

DEFAULT_SECURITY_MARKERS = frozenset(
    {
        "PreAuthorize",
        "Secured",
        "RolesAllowed",
        "UseGuards",
        "login_required",
        "jwt_required",
        "auth_required",
        "requires_auth",
        "permission_required",
        "permission_classes",
        "authenticate",
        "requireAuth",
        "ensureAuthenticated",
        "isAuthenticated",
        "checkJwt",
        "verifyToken",
        "get_current_user",
        "get_current_active_user",
    }
)
_AUTH_TOKENS = frozenset(
    {
        "auth",
        "authenticate",
        "authenticated",
        "authorize",
        "authorized",
        "authz",
        "jwt",
        "token",
        "bearer",
        "oauth",
        "oauth2",
        "permission",
        "permissions",
        "secured",
        "guard",
    }
)
_ANNOTATION_RE = re.compile(r"@(?P<name>[A-Za-z_][\w.]*)")
_CAMEL_SPLIT_RE = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|[^A-Za-z0-9]+")
# Tokens after which a ``/`` opens a regex literal rather than dividing.
_REGEX_PRECEDERS = frozenset("(,=:[!&|?{};+-*%<>~^")
_REGEX_KEYWORDS = frozenset({"return", "typeof", "case", "do", "else", "in", "of", "void", "yield", "await"})

_NAME_PREFIX_METHODS: tuple[tuple[tuple[str, ...], str], ...] = (
    (("create", "add", "save", "post", "register", "insert"), "POST"),
    (("update", "put", "replace", "edit"), "PUT"),
    (("patch",), "PATCH"),
    (("delete", "remove", "destroy"), "DELETE"),
    (("get", "list", "find", "fetch", "read", "show", "search", "index"), "GET"),
)

CONFIDENCE_EXACT = 1.0
CONFIDENCE_FRAMEWORK_DEFAULT = 0.9
CONFIDENCE_NAMING = 0.6
CONFIDENCE_GUESS = 0.3


class SourceParseError(Exception):
    """Raised by a strategy when a file cannot be parsed."""


@dataclass(frozen=True, slots=True)
class SecurityMarkers:
    """Recognized security marker names plus a naming heuristic."""

    names: frozenset[str] = DEFAULT_SECURITY_MARKERS

    @classmethod
    def with_extra(cls, extra: list[str] | tuple[str, ...] | None) -> SecurityMarkers:
        return cls(names=DEFAULT_SECURITY_MARKERS | frozenset(extra or ()))

    def matches(self, dotted_name: str) -> bool:
        if not dotted_name:
            return False
        if dotted_name in self.names:
            return True
        last = dotted_name.rsplit(".", 1)[-1]
        if last in self.names:
            return True
        lowered = dotted_name.lower()
        if "current_user" in lowered or "currentuser" in lowered:
            return True
        tokens = {token.lower() for token in _CAMEL_SPLIT_RE.split(dotted_name) if token}
        return bool(tokens & _AUTH_TOKENS)


class RouteExtractor(Protocol):
    """A pluggable strategy that recovers endpoints from one source file."""

    name: str
    suffixes: tuple[str, ...]

    def extract(self, text: str, relative_path: str, markers: SecurityMarkers) -> list[Endpoint]:
        """Return endpoints declared in ``text``; raise ``SourceParseError`` if unreadable."""


def infer_method_from_name(handler_name: str) -> tuple[str, float]:
    """Guess an HTTP method from handler naming conventions."""
    lowered = handler_name.lower()
    for prefixes, method in _NAME_PREFIX_METHODS:
        if any(lowered.startswith(prefix) for prefix in prefixes):
            return (method, CONFIDENCE_NAMING)
    return ("GET", CONFIDENCE_GUESS)


def path_parameters(
    path_template: str,
    types: dict[str, str] | None = None,
) -> list[Parameter]:
    """Build required path parameters for every placeholder in the template."""
    types = types or {}
    return [
        Parameter(name=name, location="path", required=True, type=SchemaRef(type=types.get(name)))
        for name in placeholder_names(path_template)
    ]


def merge_parameters(first: list[Parameter], second: list[Parameter]) -> tuple[Parameter, ...]:
    merged: dict[tuple[str, str], Parameter] = {}
    for param in [*first, *second]:
        merged.setdefault((param.name, param.location), param)
    return tuple(merged.values())


def scan_c_like(text: str, *, regex_literals: bool = False) -> tuple[str, bool]:
    """Blank out comments (keeping line breaks) and report whether delimiters balance.

    Handles ``//`` and ``/* */`` comments and single, double, and backtick quoted
    strings, which is enough for Java, Kotlin, JavaScript, and TypeScript. With
    ``regex_literals`` the bodies of JavaScript ``/.../flags`` literals are blanked
    so brackets and quotes inside them are not read as code.
    """
    out: list[str] = []
    stack: list[str] = []
    pairs = {")": "(", "]": "[", "}": "{"}
    balanced = True
    last_token = ""
    index = 0
    length = len(text)
    while index < length:
        char = text[index]
        nxt = text[index + 1] if index + 1 < length else ""
        if char == "/" and nxt == "/":
            end = text.find("\n", index)
            end = length if end == -1 else end
            out.append(" " * (end - index))
            index = end
            continue
        if char == "/" and nxt == "*":
            end = text.find("*/", index + 2)
            end = length if end == -1 else end + 2
            out.append(re.sub(r"[^\n]", " ", text[index:end]))
            index = end
            continue
        if char in {'"', "'", "`"}:
            end = _string_end(text, index, char)
            out.append(text[index:end])
            last_token = char
            index = end
            continue
        if char == "/" and regex_literals and _regex_may_start(last_token):
            end = _regex_end(text, index)
            if end is not None:
                out.append("/" + " " * (end - index - 2) + "/")
                last_token = "/"
                index = end
                continue
        if char in "([{":
            stack.append(char)
        elif char in ")]}":
            if not stack or stack[-1] != pairs[char]:
                balanced = False
            else:
                stack.pop()
        if char.isalnum() or char in "_$":
            last_token = last_token + char if _is_word(last_token) else char
        elif not char.isspace():
            last_token = char
        out.append(char)
        index += 1
    if stack:
        balanced = False
    return ("".join(out), balanced)


def _is_word(token: str) -> bool:
    return bool(token) and (token[-1].isalnum() or token[-1] in "_$")


def _regex_may_start(last_token: str) -> bool:
    if not last_token:
        return True
    if _is_word(last_token):
        return last_token in _REGEX_KEYWORDS
    return last_token in _REGEX_PRECEDERS


def _regex_end(text: str, start: int) -> int | None:
    """Index just past the closing ``/`` of a regex literal, or None if ``start`` is division."""
    in_class = False
    index = start + 1
    while index < len(text):
        char = text[index]
        if char == "\\":
            index += 2
            continue
        if char == "\n":
            return None
        if in_class:
            if char == "]":
                in_class = False
        elif char == "[":
            in_class = True
        elif char == "/":
            return index + 1 if index > start + 1 else None
        index += 1
    return None


def _string_end(text: str, start: int, quote: str) -> int:
    if quote == '"' and text.startswith('"""', start):
        end = text.find('"""', start + 3)
        return len(text) if end == -1 else end + 3
    index = start + 1
    while index < len(text):
        char = text[index]
        if char == "\\":
            index += 2
            continue
        if char == quote:
            return index + 1
        if char == "\n" and quote != "`":
            return index
        index += 1
    return len(text)


def read_parenthesized(text: str, open_index: int) -> tuple[str, int]:
    """Return the text inside the parentheses opening at ``open_index`` and the end index."""
    depth = 0
    index = open_index
    while index < len(text):
        char = text[index]
        if char in {'"', "'", "`"}:
            index = _string_end(text, index, char)
            continue
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
            if depth == 0:
                return (text[open_index + 1 : index], index + 1)
        index += 1
    return (text[open_index + 1 :], len(text))


def split_top_level(args: str, separator: str = ",") -> list[str]:
    """Split on ``separator`` outside brackets and string literals."""
    parts: list[str] = []
    depth = 0
    current: list[str] = []
    index = 0
    while index < len(args):
        char = args[index]
        if char in {'"', "'", "`"}:
            end = _string_end(args, index, char)
            current.append(args[index:end])
            index = end
            continue
        if char in "([{<":
            depth += 1
        elif char in ")]}>":
            depth = max(0, depth - 1)
        if char == separator and depth == 0:
            parts.append("".join(current).strip())
            current = []
        else:
            current.append(char)
        index += 1
    tail = "".join(current).strip()
    if tail:
        parts.append(tail)
    return parts


def skip_spaces(text: str, index: int) -> int:
    while index < len(text) and text[index].isspace():
        index += 1
    return index


def member_start(masked: str, position: int) -> int:
    """Index just past the previous member boundary (``;``, ``{`` or ``}``) before ``position``."""
    # Braces inside annotation arguments do not count.
    depth = 0
    index = position - 1
    while index >= 0:
        char = masked[index]
        if char == ")":
            depth += 1
        elif char == "(":
            depth -= 1
        elif depth <= 0 and char in ";{}":
            return index + 1
        index -= 1
    return 0


def annotations_in(segment: str) -> list[tuple[str, str]]:
    """Return ``(name, arguments)`` for every ``@Annotation(...)`` in ``segment``."""
    found: list[tuple[str, str]] = []
    for match in _ANNOTATION_RE.finditer(segment):
        name = match.group("name").rsplit(".", 1)[-1]
        next_index = skip_spaces(segment, match.end())
        args = ""
        if next_index < len(segment) and segment[next_index] == "(":
            args, _ = read_parenthesized(segment, next_index)
        found.append((name, args))
    return found


def trailing_annotations(masked: str, cursor: int) -> tuple[list[tuple[str, str]], int]:
    """Consume consecutive annotations starting at ``cursor``; return them and the index after."""
    found: list[tuple[str, str]] = []
    while True:
        next_index = skip_spaces(masked, cursor)
        match = _ANNOTATION_RE.match(masked, next_index)
        if match is None:
            return (found, next_index)
        args = ""
        cursor = match.end()
        after = skip_spaces(masked, cursor)
        if after < len(masked) and masked[after] == "(":
            args, cursor = read_parenthesized(masked, after)
        found.append((match.group("name").rsplit(".", 1)[-1], args))


__all__ = [
    "CONFIDENCE_EXACT",
    "CONFIDENCE_FRAMEWORK_DEFAULT",
    "CONFIDENCE_GUESS",
    "CONFIDENCE_NAMING",
    "DEFAULT_SECURITY_MARKERS",
    "RouteExtractor",
    "SecurityMarkers",
    "SourceParseError",
    "annotations_in",
    "infer_method_from_name",
    "member_start",
    "merge_parameters",
    "path_parameters",
    "read_parenthesized",
    "scan_c_like",
    "skip_spaces",
    "split_top_level",
    "trailing_annotations",
]
