"""Path template normalization shared by the loader, extractors, and matcher."""

from __future__ import annotations

import fnmatch
import re

PLACEHOLDER_RE = re.compile(r"\{([^{}/]+)\}")
WILDCARD = "{*}"

_PARAM_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    # Django / regex named groups
    (re.compile(r"\(\?P<([A-Za-z_][A-Za-z0-9_]*)>[^)]+\)"), r"{\1}"),
    # Express / Rails style ":id" (optional "?" suffix dropped)
    (re.compile(r"/:([A-Za-z_][A-Za-z0-9_]*)\??"), r"/{\1}"),
    # Flask / Werkzeug "<int:id>" and "<id>"
    (
        re.compile(r"<(?:[A-Za-z_][A-Za-z0-9_]*(?:\([^)]*\))?:)?([A-Za-z_][A-Za-z0-9_]*)>"),
        r"{\1}",
    ),
]
# Spring "{id:\\d+}" and Starlette "{id:int}" converters
_TYPED_PLACEHOLDER_RE = re.compile(r"\{\s*([A-Za-z_][A-Za-z0-9_.-]*)\s*:[^{}]*(?:\{[^{}]*\}[^{}]*)*\}")


def normalize_path(path: str) -> str:
    """Return the canonical ``/users/{id}`` form of a route template."""
    if not path:
        return "/"
    result = path.strip()
    # Query and fragment; "(?P<" opens a regex group rather than a query string.
    result = re.split(r"(?<!\()[?#]", result, maxsplit=1)[0]
    if not result.startswith("/"):
        result = "/" + result
    result = _TYPED_PLACEHOLDER_RE.sub(r"{\1}", result)
    for pattern, replacement in _PARAM_PATTERNS:
        result = pattern.sub(replacement, result)
    result = re.sub(r"\{\s*([^{}\s]+)\s*\}", r"{\1}", result)
    result = re.sub(r"/{2,}", "/", result)
    if len(result) > 1 and result.endswith("/"):
        result = result[:-1]
    return result or "/"


def join_paths(prefix: str, route: str) -> str:
    """Combine class-level or module-level prefixes with method-level paths."""
    prefix_norm = normalize_path(prefix) if prefix else ""
    route_norm = normalize_path(route) if route else "/"
    if not prefix_norm or prefix_norm == "/":
        return route_norm
    if route_norm == "/":
        return prefix_norm
    return normalize_path(f"{prefix_norm}{route_norm}")


def wildcard_template(path_template: str) -> str:
    """Replace every placeholder with a positional wildcard."""
    return PLACEHOLDER_RE.sub(WILDCARD, normalize_path(path_template))


def placeholder_names(path_template: str) -> list[str]:
    """Return placeholder names in positional order."""
    return PLACEHOLDER_RE.findall(path_template)


def match_key(method: str, path_template: str) -> tuple[str, str]:
    """Return the (METHOD, wildcard template) key used for endpoint matching."""
    return (method.strip().upper(), wildcard_template(path_template))


def segments(path_template: str) -> list[str]:
    return [segment for segment in path_template.split("/") if segment]


def is_placeholder(segment: str) -> bool:
    return bool(PLACEHOLDER_RE.fullmatch(segment))


def matches_any_glob(value: str, patterns: list[str] | tuple[str, ...]) -> bool:
    return any(fnmatch.fnmatch(value, pattern) for pattern in patterns)


def split_ignore_globs(patterns: list[str] | tuple[str, ...]) -> tuple[list[str], list[str]]:
    """Split ignore globs into (route globs, file globs); route globs start with ``/``."""
    route_globs = [pattern for pattern in patterns if pattern.startswith("/")]
    file_globs = [pattern for pattern in patterns if not pattern.startswith("/")]
    return (route_globs, file_globs)


def line_of(text: str, index: int) -> int:
    """Return 1-based line number for a character index."""
    return text.count("\n", 0, index) + 1


__all__ = [
    "WILDCARD",
    "is_placeholder",
    "join_paths",
    "line_of",
    "match_key",
    "matches_any_glob",
    "normalize_path",
    "placeholder_names",
    "segments",
    "split_ignore_globs",
    "wildcard_template",
]
