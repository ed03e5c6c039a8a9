"""OpenAPI / Swagger document loader.

Parses OpenAPI 3.x and Swagger 2.0 documents (JSON or YAML) into an immutable
``SpecModel``. Any structural problem, including a ``$ref`` that does not
resolve, raises ``ParseError``; no partial model is ever returned.
"""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any
from urllib.parse import unquote

import yaml

from api_conform.logging import get_logger
from api_conform.models import (
    HTTP_METHODS,
    Endpoint,
    Finding,
    Parameter,
    ParameterLocation,
    ResponseSpec,
    SchemaRef,
    SecurityRequirement,
    SourceLocation,
    SpecModel,
)
from api_conform.paths import join_paths, match_key, normalize_path

logger = get_logger("spec_loader")

JSON_MEDIA_TYPES = frozenset(
    {"application/json", "application/vnd.oai.openapi+json", "text/json"}
)
YAML_MEDIA_TYPES = frozenset(
    {
        "application/yaml",
        "application/x-yaml",
        "text/yaml",
        "text/x-yaml",
        "application/vnd.oai.openapi",
        "application/vnd.oai.openapi+yaml",
    }
)
SUFFIX_MEDIA_TYPES = {
    ".json": "application/json",
    ".yaml": "application/yaml",
    ".yml": "application/yaml",
}

_LOCATION_MAP: dict[str, ParameterLocation] = {
    "path": "path",
    "query": "query",
    "header": "header",
    "cookie": "header",
    "body": "body",
    "formData": "body",
}
_PATH_ITEM_KEYS = {"parameters", "summary", "description", "servers", "$ref"}
_PREFERRED_CONTENT = ("application/json", "application/problem+json", "*/*")


class ParseError(ValueError):
    """Raised when a specification document is malformed or has broken references."""


def media_type_for_path(path: Path | str) -> str:
    """Guess the document media type from its file suffix."""
    suffix = Path(path).suffix.lower()
    media_type = SUFFIX_MEDIA_TYPES.get(suffix)
    if media_type is None:
        raise ParseError(f"Cannot infer specification format from suffix '{suffix or path}'.")
    return media_type


def load_spec_file(
    path: Path,
    media_type: str | None = None,
    *,
    apply_base_path: bool = True,
) -> SpecModel:
    """Read a specification file from disk and load it."""
    try:
        content = path.read_bytes()
    except OSError as exc:
        raise ParseError(f"Cannot read specification {path}: {exc.strerror or exc}") from exc
    return load_spec(
        content,
        media_type or media_type_for_path(path),
        source_name=path.name,
        apply_base_path=apply_base_path,
    )


def load_spec(
    content: bytes,
    media_type: str,
    *,
    source_name: str = "spec",
    apply_base_path: bool = True,
) -> SpecModel:
    """Parse specification bytes of the given media type into a ``SpecModel``."""
    text = _decode(content)
    document = _parse_document(text, media_type)
    return _SpecBuilder(
        document,
        text=text,
        source_name=source_name,
        apply_base_path=apply_base_path,
    ).build()


def _decode(content: bytes) -> str:
    try:
        return content.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise ParseError(f"Specification is not valid UTF-8 (byte offset {exc.start}).") from exc


def _parse_document(text: str, media_type: str) -> dict[str, Any]:
    normalized = media_type.split(";", 1)[0].strip().lower()
    if normalized in JSON_MEDIA_TYPES:
        try:
            loaded = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ParseError(f"Invalid JSON at line {exc.lineno}: {exc.msg}") from exc
    elif normalized in YAML_MEDIA_TYPES:
        try:
            loaded = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            mark = getattr(exc, "problem_mark", None)
            where = f" at line {mark.line + 1}" if mark is not None else ""
            raise ParseError(f"Invalid YAML{where}.") from exc
    else:
        raise ParseError(f"Unsupported specification media type '{media_type}'.")

    if not isinstance(loaded, dict):
        raise ParseError("Specification root must be a mapping.")
    return loaded


class _RefResolver:
    """Local JSON-pointer resolution over one document."""

    def __init__(self, document: dict[str, Any]) -> None:
        self._document = document

    def lookup(self, ref: Any) -> Any:
        if not isinstance(ref, str):
            raise ParseError("$ref values must be strings.")
        if not ref.startswith("#/"):
            raise ParseError(f"Unresolvable reference '{ref}': only local references are supported.")
        current: Any = self._document
        for raw_token in ref[2:].split("/"):
            token = unquote(raw_token).replace("~1", "/").replace("~0", "~")
            if isinstance(current, dict) and token in current:
                current = current[token]
            elif isinstance(current, list) and token.isdigit() and int(token) < len(current):
                current = current[int(token)]
            else:
                raise ParseError(f"Unresolvable reference '{ref}'.")
        return current

    def resolve(self, node: Any) -> Any:
        """Follow a chain of ``$ref`` objects to the referenced node."""
        seen: set[str] = set()
        while isinstance(node, dict) and "$ref" in node:
            ref = node["$ref"]
            if ref in seen:
                raise ParseError(f"Circular reference chain at '{ref}'.")
            seen.add(ref)
            node = self.lookup(ref)
        return node

    def validate_all(self) -> None:
        """Check that every reference in the document resolves."""
        stack: list[Any] = [self._document]
        while stack:
            node = stack.pop()
            if isinstance(node, dict):
                ref = node.get("$ref")
                if ref is not None:
                    self.lookup(ref)
                for key, value in node.items():
                    if key == "example" or (isinstance(key, str) and key.startswith("x-")):
                        continue
                    stack.append(value)
            elif isinstance(node, list):
                stack.extend(node)

    def schema_ref(self, schema: Any, *, outer_refs: frozenset[str] = frozenset()) -> SchemaRef:
        """Summarize a schema; ``outer_refs`` are refs already being expanded by callers."""
        if not isinstance(schema, dict):
            return SchemaRef()
        ref_name: str | None = None
        seen: set[str] = set(outer_refs)
        resolved: Any = schema
        while isinstance(resolved, dict) and "$ref" in resolved:
            ref = resolved["$ref"]
            if ref_name is None:
                ref_name = str(ref).rsplit("/", 1)[-1]
            if ref in seen:
                # Recursive schema: name it without expanding it again.
                return SchemaRef(ref=ref_name)
            seen.add(ref)
            resolved = self.lookup(ref)
        if not isinstance(resolved, dict):
            return SchemaRef(ref=ref_name)

        properties: set[str] = set()
        self._collect_properties(resolved, properties, seen=set(seen))
        type_name = _type_name(resolved.get("type"))
        if type_name == "array":
            items = self.schema_ref(resolved.get("items"), outer_refs=frozenset(seen))
            inner = items.ref or items.type
            type_name = f"array[{inner}]" if inner else "array"
        elif type_name is None and properties:
            type_name = "object"
        return SchemaRef(ref=ref_name, type=type_name, properties=tuple(sorted(properties)))

    def _collect_properties(self, schema: Any, out: set[str], *, seen: set[str]) -> None:
        if not isinstance(schema, dict):
            return
        if "$ref" in schema:
            ref = schema["$ref"]
            if ref in seen:
                return
            seen.add(ref)
            self._collect_properties(self.lookup(ref), out, seen=seen)
            return
        props = schema.get("properties")
        if isinstance(props, dict):
            out.update(str(name) for name in props)
        for member in schema.get("allOf") or []:
            self._collect_properties(member, out, seen=seen)


class _LineLocator:
    """Best-effort textual lookup of mapping keys for finding locations."""

    def __init__(self, text: str) -> None:
        self._lines = text.splitlines()

    def find_key(self, key: str, *, start: int = 0, parent_indent: int = -1) -> tuple[int, int] | None:
        pattern = re.compile(r"^(\s*)[\"']?" + re.escape(key) + r"[\"']?\s*:")
        for index in range(start, len(self._lines)):
            line = self._lines[index]
            stripped = line.strip()
            if not stripped:
                continue
            indent = len(line) - len(line.lstrip())
            if parent_indent >= 0 and indent <= parent_indent:
                return None
            match = pattern.match(line)
            if match and indent > parent_indent:
                return (index, indent)
        return None

    def path_line(self, raw_path: str) -> int | None:
        hit = self._path_hit(raw_path)
        return hit[0] + 1 if hit is not None else None

    def operation_line(self, raw_path: str, method: str) -> int | None:
        path_hit = self._path_hit(raw_path)
        if path_hit is None:
            return None
        method_hit = self.find_key(method, start=path_hit[0] + 1, parent_indent=path_hit[1])
        if method_hit is None:
            return path_hit[0] + 1
        return method_hit[0] + 1

    def _path_hit(self, raw_path: str) -> tuple[int, int] | None:
        paths = self.find_key("paths")
        if paths is None:
            return None
        return self.find_key(raw_path, start=paths[0] + 1, parent_indent=paths[1])

    def key_line(self, key: str) -> int | None:
        hit = self.find_key(key)
        return hit[0] + 1 if hit is not None else None


class _SpecBuilder:
    def __init__(
        self,
        document: dict[str, Any],
        *,
        text: str,
        source_name: str,
        apply_base_path: bool,
    ) -> None:
        self._doc = document
        self._source_name = source_name
        self._apply_base_path = apply_base_path
        self._resolver = _RefResolver(document)
        self._lines = _LineLocator(text)
        self._findings: list[Finding] = []
        self._swagger2 = False

    def build(self) -> SpecModel:
        self._swagger2 = self._detect_version()
        self._resolver.validate_all()

        info = self._doc.get("info") if isinstance(self._doc.get("info"), dict) else {}
        paths = self._doc.get("paths", {})
        if paths is None:
            paths = {}
        if not isinstance(paths, dict):
            raise ParseError("'paths' must be a mapping.")

        base_path = self._base_path() if self._apply_base_path else ""
        self._note_extensions(self._doc, line=None)

        endpoints: list[Endpoint] = []
        for raw_path, raw_item in paths.items():
            if not isinstance(raw_path, str):
                raise ParseError(f"Path keys must be strings, got {raw_path!r}.")
            if raw_path.startswith("x-"):
                self._note_extensions({raw_path: raw_item}, line=None)
                continue
            path_item = self._resolver.resolve(raw_item)
            if path_item is None:
                continue
            if not isinstance(path_item, dict):
                raise ParseError(f"Path item '{raw_path}' must be a mapping.")
            endpoints.extend(self._endpoints_for_path(raw_path, path_item, base_path))

        endpoints.sort(key=lambda item: item.sort_key())
        self._check_duplicate_routes(endpoints)
        logger.debug(
            "Loaded %d declared endpoints from %s", len(endpoints), self._source_name
        )
        return SpecModel(
            title=str(info.get("title", "")),
            version=str(info.get("version", "")),
            endpoints=tuple(endpoints),
            schemas=self._schema_names(),
            base_path=base_path,
            source_name=self._source_name,
            findings=tuple(self._findings),
        )

    def _detect_version(self) -> bool:
        swagger = self._doc.get("swagger")
        openapi = self._doc.get("openapi")
        if swagger is not None:
            if str(swagger) != "2.0":
                raise ParseError(f"Unsupported Swagger version '{swagger}'.")
            return True
        if openapi is not None:
            if not str(openapi).startswith("3."):
                raise ParseError(f"Unsupported OpenAPI version '{openapi}'.")
            return False
        raise ParseError("Document declares neither 'openapi' nor 'swagger' version.")

    def _base_path(self) -> str:
        if self._swagger2:
            raw = self._doc.get("basePath") or ""
            return normalize_path(str(raw)) if raw else ""
        servers = self._doc.get("servers")
        if not isinstance(servers, list) or not servers or not isinstance(servers[0], dict):
            return ""
        return _server_path(str(servers[0].get("url", "")))

    def _schema_names(self) -> tuple[str, ...]:
        if self._swagger2:
            container = self._doc.get("definitions")
        else:
            components = self._doc.get("components")
            container = components.get("schemas") if isinstance(components, dict) else None
        if not isinstance(container, dict):
            return ()
        return tuple(sorted(str(name) for name in container))

    def _endpoints_for_path(
        self,
        raw_path: str,
        path_item: dict[str, Any],
        base_path: str,
    ) -> list[Endpoint]:
        template = join_paths(base_path, raw_path) if base_path else normalize_path(raw_path)
        shared_params = self._parameters(path_item.get("parameters"), where=raw_path)
        path_line = self._lines.path_line(raw_path)
        self._note_extensions(path_item, line=path_line)

        endpoints: list[Endpoint] = []
        for key, operation in path_item.items():
            if key in _PATH_ITEM_KEYS or (isinstance(key, str) and key.startswith("x-")):
                continue
            method = str(key).upper()
            if method not in HTTP_METHODS:
                raise ParseError(f"Unknown operation '{key}' under path '{raw_path}'.")
            if not isinstance(operation, dict):
                raise ParseError(f"Operation {method} {raw_path} must be a mapping.")

            line = self._lines.operation_line(raw_path, str(key))
            self._note_extensions(operation, line=line)
            parameters = _merge_parameters(
                shared_params,
                self._parameters(operation.get("parameters"), where=f"{method} {raw_path}"),
            )
            body = self._request_body(operation.get("requestBody"))
            if body is not None:
                parameters = _merge_parameters(parameters, [body])

            operation_id = operation.get("operationId")
            endpoints.append(
                Endpoint(
                    method=method,
                    path_template=template,
                    parameters=tuple(parameters),
                    responses=self._responses(operation.get("responses"), where=f"{method} {raw_path}"),
                    security=self._security(operation),
                    location=SourceLocation(self._source_name, line),
                    confidence=1.0,
                    origin="spec",
                    operation_id=str(operation_id) if operation_id is not None else None,
                )
            )
        return endpoints

    def _parameters(self, raw: Any, *, where: str) -> list[Parameter]:
        if raw is None:
            return []
        if not isinstance(raw, list):
            raise ParseError(f"Parameters of {where} must be a list.")
        parsed: list[Parameter] = []
        for raw_param in raw:
            param = self._resolver.resolve(raw_param)
            if not isinstance(param, dict) or "name" not in param or "in" not in param:
                raise ParseError(f"Parameter of {where} is missing 'name' or 'in'.")
            location = _LOCATION_MAP.get(str(param["in"]))
            if location is None:
                raise ParseError(f"Parameter '{param['name']}' of {where} has unknown location '{param['in']}'.")
            if self._swagger2 and location != "body":
                schema_ref = self._resolver.schema_ref(param)
            else:
                schema_ref = self._resolver.schema_ref(param.get("schema") or _first_content_schema(param.get("content")))
            parsed.append(
                Parameter(
                    name=str(param["name"]),
                    location=location,
                    required=True if location == "path" else bool(param.get("required", False)),
                    type=schema_ref,
                )
            )
        return parsed

    def _request_body(self, raw: Any) -> Parameter | None:
        if raw is None:
            return None
        body = self._resolver.resolve(raw)
        if not isinstance(body, dict):
            raise ParseError("requestBody must be a mapping.")
        schema = _first_content_schema(body.get("content"))
        return Parameter(
            name="body",
            location="body",
            required=bool(body.get("required", False)),
            type=self._resolver.schema_ref(schema),
        )

    def _responses(self, raw: Any, *, where: str) -> tuple[ResponseSpec, ...]:
        if raw is None:
            return ()
        if not isinstance(raw, dict):
            raise ParseError(f"Responses of {where} must be a mapping.")
        responses: list[ResponseSpec] = []
        for status, raw_response in raw.items():
            status_text = str(status)
            if status_text.startswith("x-"):
                continue
            status_text = "default" if status_text.lower() == "default" else status_text.upper()
            response = self._resolver.resolve(raw_response)
            if not isinstance(response, dict):
                raise ParseError(f"Response '{status_text}' of {where} must be a mapping.")
            if self._swagger2:
                schema = response.get("schema")
            else:
                schema = _first_content_schema(response.get("content"))
            responses.append(
                ResponseSpec(
                    status=status_text,
                    description=str(response.get("description", "")),
                    schema=self._resolver.schema_ref(schema) if schema is not None else None,
                )
            )
        responses.sort(key=lambda item: item.status)
        return tuple(responses)

    def _security(self, operation: dict[str, Any]) -> tuple[SecurityRequirement, ...]:
        raw = operation.get("security", self._doc.get("security"))
        if raw is None:
            return ()
        if not isinstance(raw, list):
            raise ParseError("'security' must be a list of requirement objects.")
        requirements: list[SecurityRequirement] = []
        for item in raw:
            if not isinstance(item, dict):
                raise ParseError("'security' must be a list of requirement objects.")
            if not item:
                continue
            scopes: list[str] = []
            for value in item.values():
                if isinstance(value, list):
                    scopes.extend(str(scope) for scope in value)
            requirements.append(
                SecurityRequirement(
                    scheme="+".join(sorted(str(name) for name in item)),
                    scopes=tuple(sorted(set(scopes))),
                )
            )
        return tuple(requirements)

    def _note_extensions(self, mapping: dict[str, Any], *, line: int | None) -> None:
        for key in mapping:
            if not (isinstance(key, str) and key.startswith("x-")):
                continue
            key_line = line if line is not None else self._lines.key_line(key)
            self._findings.append(
                Finding(
                    rule_id="spec_extension",
                    severity="info",
                    message=f"Unsupported specification extension '{key}' was ignored.",
                    location=SourceLocation(self._source_name, key_line),
                )
            )

    def _check_duplicate_routes(self, endpoints: list[Endpoint]) -> None:
        seen: dict[tuple[str, str], Endpoint] = {}
        for endpoint in endpoints:
            key = match_key(endpoint.method, endpoint.path_template)
            first = seen.get(key)
            if first is None:
                seen[key] = endpoint
                continue
            self._findings.append(
                Finding(
                    rule_id="duplicate_route",
                    severity="warning",
                    message=(
                        f"Declared routes {first.label} and {endpoint.label} "
                        "resolve to the same route."
                    ),
                    location=endpoint.location,
                    suggested_fix="Keep one declaration per route and one name per path placeholder.",
                )
            )


def _merge_parameters(base: list[Parameter], overrides: list[Parameter]) -> list[Parameter]:
    merged: dict[tuple[str, str], Parameter] = {(p.name, p.location): p for p in base}
    for param in overrides:
        merged[(param.name, param.location)] = param
    return list(merged.values())


def _first_content_schema(content: Any) -> Any:
    if not isinstance(content, dict) or not content:
        return None
    for media_type in _PREFERRED_CONTENT:
        entry = content.get(media_type)
        if isinstance(entry, dict) and "schema" in entry:
            return entry["schema"]
    for media_type in sorted(content):
        entry = content[media_type]
        if isinstance(entry, dict) and "schema" in entry:
            return entry["schema"]
    return None


def _type_name(raw: Any) -> str | None:
    if isinstance(raw, str):
        return raw
    if isinstance(raw, list):
        names = sorted(str(item) for item in raw if item != "null")
        return "|".join(names) if names else None
    return None


def _server_path(url: str) -> str:
    remainder = url.split("://", 1)[1] if "://" in url else url
    if "://" in url:
        slash = remainder.find("/")
        remainder = remainder[slash:] if slash >= 0 else ""
    remainder = remainder.split("?", 1)[0]
    if not remainder or remainder == "/":
        return ""
    return normalize_path(remainder)


__all__ = [
    "ParseError",
    "load_spec",
    "load_spec_file",
    "media_type_for_path",
]
