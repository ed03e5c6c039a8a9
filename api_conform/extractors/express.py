"""Express-style router calls and NestJS controllers in JavaScript / TypeScript."""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from api_conform.extractors.base import (
    CONFIDENCE_EXACT,
    SecurityMarkers,
    SourceParseError,
    annotations_in,
    member_start,
    merge_parameters,
    path_parameters,
    read_parenthesized,
    scan_c_like,
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

_CALL_RE = re.compile(r"\b(?P<receiver>[A-Za-z_$][\w$]*)\s*\.\s*(?P<verb>get|post|put|patch|delete|head|options|route|use)\s*\(")
_CHAIN_RE = re.compile(r"\s*\.\s*(?P<verb>get|post|put|patch|delete|head|options|all)\s*\(")
_ROUTER_DECL_RE = re.compile(
    r"\b(?:const|let|var)\s+(?P<name>[A-Za-z_$][\w$]*)\s*(?::\s*[\w.<>]+\s*)?=\s*"
    r"(?:new\s+)?(?:express\s*\.\s*)?(?:Router|express|fastify|Hono|Koa)\s*\("
)
_ROUTER_NAME_RE = re.compile(r"^(?:app|api|server|router|routes)$|(?:Router|router|Routes|routes)$")
_LITERAL_RE = re.compile(r"""^(?P<quote>['"`])(?P<value>[^'"`]*)(?P=quote)$""")
_IDENT_RE = re.compile(r"^(?P<name>[A-Za-z_$][\w$.]*)\s*(?:\(.*\))?$", re.DOTALL)
_STATUS_RE = re.compile(r"\.\s*(?:status|sendStatus)\s*\(\s*(?P<code>[1-5]\d\d)\s*\)")
_QUERY_ATTR_RE = re.compile(r"\breq\s*\.\s*query\s*\.\s*(?P<name>[A-Za-z_$][\w$]*)")
_QUERY_DESTRUCTURE_RE = re.compile(r"\{(?P<names>[^{}]*)\}\s*=\s*req\s*\.\s*query\b")
_HEADER_RE = re.compile(
    r"""\breq\s*\.\s*(?:get|header)\s*\(\s*['"](?P<call>[^'"]+)['"]\s*\)"""
    r"""|\breq\s*\.\s*headers\s*\[\s*['"](?P<index>[^'"]+)['"]\s*\]"""
)
_BODY_RE = re.compile(r"\breq\s*\.\s*body\b")

_NEST_CLASS_RE = re.compile(r"\bclass\s+(?P<name>\w+)")
_NEST_VERB_RE = re.compile(r"@(?P<verb>Get|Post|Put|Patch|Delete|Head|Options)\s*\(")
_NEST_METHOD_RE = re.compile(r"(?:(?:public|private|protected|async|static)\s+)*(?P<name>[A-Za-z_$][\w$]*)\s*\(")
_NEST_PARAMS: dict[str, ParameterLocation] = {
    "Param": "path",
    "Query": "query",
    "Headers": "header",
    "Body": "body",
}
_NEST_OPEN_ACCESS = {"Public", "AllowAnonymous", "SkipAuth"}


@dataclass(slots=True)
class _Router:
    prefixes: list[str] = field(default_factory=list)
    # (offset of the use() call, requirement); -1 guards every route on the router.
    security: list[tuple[int, SecurityRequirement]] = field(default_factory=list)


class ExpressRouteExtractor:
    """Extracts Express/Koa-style ``router.verb(path, ...)`` calls and NestJS controllers."""

    name = "express"
    suffixes = (".js", ".mjs", ".cjs", ".ts")

    def extract(self, text: str, relative_path: str, markers: SecurityMarkers) -> list[Endpoint]:
        masked, balanced = scan_c_like(text, regex_literals=True)
        if not balanced:
            raise SourceParseError("Unbalanced braces or parentheses.")
        endpoints = self._express_routes(masked, relative_path, markers)
        if "@Controller" in masked:
            endpoints.extend(self._nest_routes(masked, relative_path, markers))
        return endpoints

    def _express_routes(
        self,
        masked: str,
        relative_path: str,
        markers: SecurityMarkers,
    ) -> list[Endpoint]:
        declared = {match.group("name") for match in _ROUTER_DECL_RE.finditer(masked)}
        routers: dict[str, _Router] = {}
        calls: list[tuple[int, str, str, list[str], str]] = []

        for match in _CALL_RE.finditer(masked):
            receiver = match.group("receiver")
            if receiver not in declared and not _ROUTER_NAME_RE.search(receiver):
                continue
            args_text, end = read_parenthesized(masked, match.end() - 1)
            args = split_top_level(args_text)
            verb = match.group("verb")
            if verb == "use":
                self._record_use(match.start(), receiver, args, routers, markers)
                continue
            if len(args) < (1 if verb == "route" else 2):
                continue
            path = _literal(args[0])
            if path is None:
                continue
            if verb == "route":
                cursor = end
                while True:
                    chained = _CHAIN_RE.match(masked, cursor)
                    if chained is None:
                        break
                    chained_args, cursor = read_parenthesized(masked, chained.end() - 1)
                    if chained.group("verb") != "all":
                        calls.append(
                            (match.start(), receiver, chained.group("verb"), ["", *split_top_level(chained_args)], path)
                        )
                continue
            calls.append((match.start(), receiver, verb, args, path))

        endpoints: list[Endpoint] = []
        for position, receiver, verb, args, path in calls:
            router = routers.get(receiver, _Router())
            handlers = args[1:]
            security = [requirement for offset, requirement in router.security if offset < position]
            for middleware in handlers[:-1]:
                name = _callable_name(middleware)
                if name and markers.matches(name):
                    security.append(SecurityRequirement(scheme=name))
            handler_text = handlers[-1] if handlers else ""
            for prefix in router.prefixes or [""]:
                template = join_paths(prefix, path)
                endpoints.append(
                    Endpoint(
                        method=verb.upper(),
                        path_template=template,
                        parameters=merge_parameters(path_parameters(template), _handler_parameters(handler_text)),
                        responses=_handler_responses(handler_text),
                        security=tuple(dict.fromkeys(security)),
                        location=SourceLocation(relative_path, line_of(masked, position)),
                        confidence=CONFIDENCE_EXACT,
                        origin="express",
                        operation_id=_callable_name(handler_text) if handlers else None,
                    )
                )
        return endpoints

    def _record_use(
        self,
        position: int,
        receiver: str,
        args: list[str],
        routers: dict[str, _Router],
        markers: SecurityMarkers,
    ) -> None:
        if not args:
            return
        prefix = _literal(args[0])
        rest = args[1:] if prefix is not None else args
        names = [name for name in (_callable_name(arg) for arg in rest) if name]
        middleware_security = [SecurityRequirement(scheme=name) for name in names if markers.matches(name)]
        mounted = [name for name in names if not markers.matches(name)]
        parent = routers.get(receiver, _Router())
        if prefix is None:
            guards = routers.setdefault(receiver, _Router()).security
            guards.extend((position, req) for req in middleware_security)
            return
        inherited = [req for offset, req in parent.security if offset < position]
        for child_name in mounted:
            child = routers.setdefault(child_name, _Router())
            for parent_prefix in parent.prefixes or [""]:
                child.prefixes.append(join_paths(parent_prefix, prefix))
            child.security.extend((-1, req) for req in [*inherited, *middleware_security])

    def _nest_routes(
        self,
        masked: str,
        relative_path: str,
        markers: SecurityMarkers,
    ) -> list[Endpoint]:
        controllers: list[tuple[int, str, list[SecurityRequirement]]] = []
        for match in _NEST_CLASS_RE.finditer(masked):
            block_start = member_start(masked, match.start())
            annotations = annotations_in(masked[block_start : match.start()])
            names = [name for name, _ in annotations]
            if "Controller" not in names:
                continue
            prefix = ""
            security: list[SecurityRequirement] = []
            for name, args in annotations:
                if name == "Controller":
                    prefix = _controller_prefix(args)
                elif markers.matches(name):
                    security.append(SecurityRequirement(scheme=f"@{name}", scopes=_guard_names(args)))
            controllers.append((block_start, prefix, security))

        endpoints: list[Endpoint] = []
        for match in _NEST_VERB_RE.finditer(masked):
            owner = None
            for controller in controllers:
                if controller[0] <= match.start():
                    owner = controller
            if owner is None:
                continue
            _, prefix, class_security = owner
            args, cursor = read_parenthesized(masked, match.end() - 1)
            leading = annotations_in(masked[member_start(masked, match.start()) : match.start()])
            trailing, signature_start = trailing_annotations(masked, cursor)
            method_match = _NEST_METHOD_RE.match(masked, signature_start)
            if method_match is None:
                continue
            params_text, _ = read_parenthesized(masked, method_match.end() - 1)

            security: list[SecurityRequirement] = []
            responses: list[ResponseSpec] = []
            open_access = False
            for name, annotation_args in [*leading, *trailing]:
                if name in _NEST_OPEN_ACCESS:
                    open_access = True
                elif name == "HttpCode":
                    code = re.search(r"\d{3}", annotation_args)
                    if code:
                        responses.append(ResponseSpec(status=code.group(0)))
                elif markers.matches(name):
                    security.append(SecurityRequirement(scheme=f"@{name}", scopes=_guard_names(annotation_args)))
            if not open_access:
                security = [*class_security, *security]

            route = _literal(args.strip()) if args.strip() else ""
            template = join_paths(prefix, route or "")
            endpoints.append(
                Endpoint(
                    method=match.group("verb").upper(),
                    path_template=template,
                    parameters=merge_parameters(path_parameters(template), _nest_parameters(params_text)),
                    responses=tuple(responses),
                    security=tuple(dict.fromkeys(security)),
                    location=SourceLocation(relative_path, line_of(masked, match.start())),
                    confidence=CONFIDENCE_EXACT,
                    origin="nestjs",
                    operation_id=method_match.group("name"),
                )
            )
        return endpoints


def _literal(arg: str) -> str | None:
    match = _LITERAL_RE.match(arg.strip())
    if match is None or "${" in match.group("value"):
        return None
    return match.group("value")


def _callable_name(arg: str) -> str | None:
    stripped = arg.strip()
    if stripped.startswith(("async", "function", "(")) or "=>" in stripped:
        return None
    match = _IDENT_RE.match(stripped)
    return match.group("name") if match else None


def _handler_parameters(handler_text: str) -> list[Parameter]:
    params: list[Parameter] = []
    for match in _QUERY_ATTR_RE.finditer(handler_text):
        params.append(Parameter(name=match.group("name"), location="query"))
    for match in _QUERY_DESTRUCTURE_RE.finditer(handler_text):
        for raw in match.group("names").split(","):
            name = raw.split(":", 1)[0].split("=", 1)[0].strip()
            if name and not name.startswith("..."):
                params.append(Parameter(name=name, location="query"))
    for match in _HEADER_RE.finditer(handler_text):
        header = match.group("call") or match.group("index")
        params.append(Parameter(name=header, location="header"))
    if _BODY_RE.search(handler_text):
        params.append(Parameter(name="body", location="body"))
    return params


def _handler_responses(handler_text: str) -> tuple[ResponseSpec, ...]:
    codes = sorted({match.group("code") for match in _STATUS_RE.finditer(handler_text)})
    return tuple(ResponseSpec(status=code) for code in codes)


def _controller_prefix(args: str) -> str:
    stripped = args.strip()
    if not stripped:
        return ""
    literal = _literal(stripped)
    if literal is not None:
        return literal
    path = re.search(r"""\bpath\s*:\s*['"`]([^'"`]*)['"`]""", stripped)
    return path.group(1) if path else ""


def _guard_names(args: str) -> tuple[str, ...]:
    return tuple(part.strip() for part in split_top_level(args) if part.strip())


def _nest_parameters(params_text: str) -> list[Parameter]:
    params: list[Parameter] = []
    for declaration in split_top_level(params_text):
        for name, args in annotations_in(declaration):
            location = _NEST_PARAMS.get(name)
            if location is None:
                continue
            explicit = _literal(args.strip()) if args.strip() else None
            type_match = re.search(r":\s*(?P<type>[\w.<>\[\]]+)\s*$", declaration)
            type_name = type_match.group("type") if type_match else None
            if location == "body":
                params.append(Parameter(name="body", location="body", required=True, type=SchemaRef(type=type_name)))
            elif explicit:
                required = location == "path"
                params.append(Parameter(name=explicit, location=location, required=required, type=SchemaRef(type=type_name)))
            break
    return params


__all__ = ["ExpressRouteExtractor"]
