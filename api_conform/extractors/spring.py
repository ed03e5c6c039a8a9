"""Spring MVC / JAX-style annotation scanning for Java and Kotlin sources."""

from __future__ import annotations

import re

from api_conform.extractors.base import (
    CONFIDENCE_EXACT,
    SecurityMarkers,
    SourceParseError,
    annotations_in,
    infer_method_from_name,
    member_start,
    merge_parameters,
    path_parameters,
    read_parenthesized,
    scan_c_like,
    skip_spaces,
    split_top_level,
    trailing_annotations,
)
from api_conform.models import (
    Endpoint,
    Parameter,
    ParameterLocation,
    ResponseSpec,
    SchemaRef,
    SecurityRequirement,
    SourceLocation,
)
from api_conform.paths import join_paths, line_of

_CLASS_RE = re.compile(r"\b(?:class|interface|object)\s+(?P<name>\w+)")
_MAPPING_RE = re.compile(r"@(?P<kind>Get|Post|Put|Delete|Patch|Request)Mapping\b")
_STRING_RE = re.compile(r"\"((?:[^\"\\]|\\.)*)\"")
_REQUEST_METHOD_RE = re.compile(r"RequestMethod\.(GET|POST|PUT|PATCH|DELETE|HEAD|OPTIONS|TRACE)")
_NAMED_ARG_RE = re.compile(r"^\s*(?P<key>\w+)\s*=\s*(?P<value>.+)$", re.DOTALL)
_HANDLER_RE = re.compile(r"(?:\bfun\s+)?\b(?P<name>[A-Za-z_]\w*)\s*\($")
_MEMBER_BOUNDARY_RE = re.compile(r"[;{}]")

_PARAM_ANNOTATIONS: dict[str, ParameterLocation] = {
    "PathVariable": "path",
    "RequestParam": "query",
    "RequestHeader": "header",
    "CookieValue": "header",
    "RequestBody": "body",
}
_OPEN_ACCESS = {"PermitAll", "AnonymousAllowed"}
_HTTP_STATUS_CODES = {
    "OK": "200",
    "CREATED": "201",
    "ACCEPTED": "202",
    "NO_CONTENT": "204",
    "MOVED_PERMANENTLY": "301",
    "FOUND": "302",
    "NOT_MODIFIED": "304",
    "BAD_REQUEST": "400",
    "UNAUTHORIZED": "401",
    "FORBIDDEN": "403",
    "NOT_FOUND": "404",
    "METHOD_NOT_ALLOWED": "405",
    "CONFLICT": "409",
    "GONE": "410",
    "PRECONDITION_FAILED": "412",
    "UNPROCESSABLE_ENTITY": "422",
    "TOO_MANY_REQUESTS": "429",
    "INTERNAL_SERVER_ERROR": "500",
    "SERVICE_UNAVAILABLE": "503",
}


class SpringRouteExtractor:
    """Extracts Spring MVC request mappings, class prefixes, and method security."""

    name = "spring"
    suffixes = (".java", ".kt")

    def extract(self, text: str, relative_path: str, markers: SecurityMarkers) -> list[Endpoint]:
        masked, balanced = scan_c_like(text)
        if not balanced:
            raise SourceParseError("Unbalanced braces or parentheses.")

        classes = self._class_contexts(masked, markers)
        endpoints: list[Endpoint] = []
        for match in _MAPPING_RE.finditer(masked):
            owner = _owning_class(classes, match.start())
            if owner is None:
                continue
            if _is_class_annotation(masked, match.end()):
                continue
            endpoints.extend(
                self._endpoints_for_mapping(masked, match, owner, relative_path, markers)
            )
        return endpoints

    def _class_contexts(
        self,
        masked: str,
        markers: SecurityMarkers,
    ) -> list[tuple[int, str, list[SecurityRequirement]]]:
        contexts: list[tuple[int, str, list[SecurityRequirement]]] = []
        for match in _CLASS_RE.finditer(masked):
            block_start = member_start(masked, match.start())
            annotations = annotations_in(masked[block_start : match.start()])
            prefix = ""
            security: list[SecurityRequirement] = []
            for name, args in annotations:
                if name == "RequestMapping":
                    paths = _mapping_paths(args)
                    prefix = paths[0] if paths else ""
                elif markers.matches(name):
                    security.append(SecurityRequirement(scheme=f"@{name}", scopes=_string_values(args)))
            contexts.append((block_start, prefix, security))
        return contexts

    def _endpoints_for_mapping(
        self,
        masked: str,
        match: re.Match[str],
        owner: tuple[int, str, list[SecurityRequirement]],
        relative_path: str,
        markers: SecurityMarkers,
    ) -> list[Endpoint]:
        _, class_prefix, class_security = owner
        args = ""
        cursor = match.end()
        next_index = skip_spaces(masked, cursor)
        if next_index < len(masked) and masked[next_index] == "(":
            args, cursor = read_parenthesized(masked, next_index)

        block_start = member_start(masked, match.start())
        leading = annotations_in(masked[block_start : match.start()])
        trailing, signature_start = trailing_annotations(masked, cursor)
        handler, params_text = _handler_signature(masked, signature_start)
        if handler is None:
            return []

        kind = match.group("kind")
        if kind == "Request":
            methods = _REQUEST_METHOD_RE.findall(args)
            if methods:
                method_confidence = [(method, CONFIDENCE_EXACT) for method in dict.fromkeys(methods)]
            else:
                method_confidence = [infer_method_from_name(handler)]
        else:
            method_confidence = [(kind.upper(), CONFIDENCE_EXACT)]

        security: list[SecurityRequirement] = []
        open_access = False
        responses: list[ResponseSpec] = []
        for name, annotation_args in [*leading, *trailing]:
            if name in _OPEN_ACCESS:
                open_access = True
            elif name == "ResponseStatus":
                status = _response_status(annotation_args)
                if status is not None:
                    responses.append(ResponseSpec(status=status))
            elif markers.matches(name):
                security.append(
                    SecurityRequirement(scheme=f"@{name}", scopes=_string_values(annotation_args))
                )
        if not open_access:
            security = [*class_security, *security]

        declared_params = _signature_parameters(params_text)
        path_types = {param.name: param.type.type for param in declared_params if param.location == "path" and param.type.type}
        line = line_of(masked, match.start())
        endpoints: list[Endpoint] = []
        for raw_path in _mapping_paths(args) or [""]:
            template = join_paths(class_prefix, raw_path)
            parameters = merge_parameters(path_parameters(template, path_types), declared_params)
            for method, confidence in method_confidence:
                endpoints.append(
                    Endpoint(
                        method=method,
                        path_template=template,
                        parameters=parameters,
                        responses=tuple(responses),
                        security=tuple(dict.fromkeys(security)),
                        location=SourceLocation(relative_path, line),
                        confidence=confidence,
                        origin="spring",
                        operation_id=handler,
                    )
                )
        return endpoints


def _owning_class(
    classes: list[tuple[int, str, list[SecurityRequirement]]],
    position: int,
) -> tuple[int, str, list[SecurityRequirement]] | None:
    owner = None
    for context in classes:
        if context[0] <= position:
            owner = context
    return owner


def _is_class_annotation(masked: str, cursor: int) -> bool:
    next_index = skip_spaces(masked, cursor)
    if next_index < len(masked) and masked[next_index] == "(":
        _, next_index = read_parenthesized(masked, next_index)
    _, signature_start = trailing_annotations(masked, next_index)
    rest = masked[signature_start : signature_start + 200]
    return bool(re.match(r"\s*(?:(?:public|protected|private|abstract|final|open|data)\s+)*(?:class|interface|object)\b", rest))


def _handler_signature(masked: str, start: int) -> tuple[str | None, str]:
    open_paren = masked.find("(", start)
    if open_paren == -1:
        return (None, "")
    header = masked[start : open_paren + 1]
    if _MEMBER_BOUNDARY_RE.search(header):
        return (None, "")
    match = _HANDLER_RE.search(header)
    if match is None:
        return (None, "")
    params, _ = read_parenthesized(masked, open_paren)
    return (match.group("name"), params)


def _signature_parameters(params_text: str) -> list[Parameter]:
    params: list[Parameter] = []
    for declaration in split_top_level(params_text):
        annotations = annotations_in(declaration)
        location = None
        annotation_args = ""
        for name, args in annotations:
            if name in _PARAM_ANNOTATIONS:
                location = _PARAM_ANNOTATIONS[name]
                annotation_args = args
                break
        if location is None:
            continue
        variable, type_name = _declared_variable(declaration)
        explicit = _named_or_positional(annotation_args, ("value", "name"))
        required = True
        named = _named_args(annotation_args)
        if named.get("required", "").strip() == "false" or "defaultValue" in named:
            required = False
        if location == "body":
            name = "body"
        else:
            name = explicit or variable or ""
        if not name:
            continue
        params.append(
            Parameter(name=name, location=location, required=required, type=SchemaRef(type=type_name))
        )
    return params


def _declared_variable(declaration: str) -> tuple[str | None, str | None]:
    stripped = re.sub(r"@[\w.]+\s*(?:\([^)]*\))?", " ", declaration)
    stripped = re.sub(r"\bfinal\b", " ", stripped).strip()
    if ":" in stripped:
        # Kotlin: name: Type = default
        name, _, type_part = stripped.partition(":")
        type_name = type_part.split("=", 1)[0].strip() or None
        return (name.strip().split()[-1] if name.strip() else None, type_name)
    parts = stripped.split()
    if len(parts) >= 2:
        return (parts[-1], " ".join(parts[:-1]))
    return (parts[0] if parts else None, None)


def _mapping_paths(args: str) -> list[str]:
    if not args.strip():
        return []
    named = _named_args(args)
    for key in ("value", "path"):
        if key in named:
            return _string_values_list(named[key])
    first = split_top_level(args)[0]
    if _NAMED_ARG_RE.match(first):
        return []
    return _string_values_list(first)


def _named_args(args: str) -> dict[str, str]:
    named: dict[str, str] = {}
    for part in split_top_level(args):
        match = _NAMED_ARG_RE.match(part)
        if match and not part.lstrip().startswith('"'):
            named[match.group("key")] = match.group("value").strip()
    return named


def _named_or_positional(args: str, keys: tuple[str, ...]) -> str | None:
    if not args.strip():
        return None
    named = _named_args(args)
    for key in keys:
        if key in named:
            values = _string_values_list(named[key])
            return values[0] if values else None
    parts = split_top_level(args)
    if parts and not _NAMED_ARG_RE.match(parts[0]):
        values = _string_values_list(parts[0])
        return values[0] if values else None
    return None


def _string_values_list(value: str) -> list[str]:
    return _STRING_RE.findall(value)


def _string_values(args: str) -> tuple[str, ...]:
    return tuple(_STRING_RE.findall(args))


def _response_status(args: str) -> str | None:
    match = re.search(r"HttpStatus\.(\w+)", args)
    if match is None:
        return None
    return _HTTP_STATUS_CODES.get(match.group(1))


__all__ = ["SpringRouteExtractor"]
