"""FastAPI / Starlette / Flask route extraction over the Python AST."""

from __future__ import annotations

import ast
import re
from dataclasses import dataclass, field

from api_conform.extractors.base import (
    CONFIDENCE_EXACT,
    CONFIDENCE_FRAMEWORK_DEFAULT,
    SecurityMarkers,
    SourceParseError,
    merge_parameters,
    path_parameters,
)
from api_conform.models import (
    HTTP_METHODS,
    Endpoint,
    Parameter,
    ParameterLocation,
    ResponseSpec,
    SchemaRef,
    SecurityRequirement,
    SourceLocation,
)
from api_conform.paths import join_paths, normalize_path

_VERB_ATTRS = {method.lower() for method in HTTP_METHODS}
_ROUTE_ATTRS = {"route", "api_route"}
_PREFIX_KEYWORDS = ("prefix", "url_prefix")
_PARAM_FACTORIES: dict[str, ParameterLocation] = {
    "Query": "query",
    "Header": "header",
    "Cookie": "header",
    "Body": "body",
    "Form": "body",
    "File": "body",
}
_SECURITY_FACTORIES = {"Depends", "Security"}
_HTTP_STATUS_RE = re.compile(r"HTTP_(\d{3})")


@dataclass(slots=True)
class _Router:
    prefix: str = ""
    security: list[SecurityRequirement] = field(default_factory=list)


class PythonRouteExtractor:
    """Detects decorator-declared routes in FastAPI, Starlette, and Flask modules."""

    name = "python"
    suffixes = (".py",)

    def extract(self, text: str, relative_path: str, markers: SecurityMarkers) -> list[Endpoint]:
        try:
            tree = ast.parse(text, filename=relative_path)
        except SyntaxError as exc:
            raise SourceParseError(f"Python syntax error at line {exc.lineno}.") from exc

        routers = _collect_routers(tree, markers)
        endpoints: list[Endpoint] = []
        for node in ast.walk(tree):
            if not isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)):
                continue
            endpoints.extend(_endpoints_for_function(node, routers, relative_path, markers))
        return endpoints


def _collect_routers(tree: ast.Module, markers: SecurityMarkers) -> dict[str, _Router]:
    routers: dict[str, _Router] = {}
    for node in tree.body:
        if isinstance(node, (ast.Assign, ast.AnnAssign)) and isinstance(node.value, ast.Call):
            targets = node.targets if isinstance(node, ast.Assign) else [node.target]
            call = node.value
            router = _Router(
                prefix=_keyword_string(call, _PREFIX_KEYWORDS) or "",
                security=_dependency_security(_keyword(call, "dependencies"), markers),
            )
            if not (router.prefix or router.security) and not _looks_like_router(call):
                continue
            for target in targets:
                if isinstance(target, ast.Name):
                    routers[target.id] = router

    # app.include_router(router, prefix=...) / app.register_blueprint(bp, url_prefix=...)
    for node in tree.body:
        if not (isinstance(node, ast.Expr) and isinstance(node.value, ast.Call)):
            continue
        call = node.value
        if not isinstance(call.func, ast.Attribute):
            continue
        if call.func.attr not in {"include_router", "register_blueprint"} or not call.args:
            continue
        included = call.args[0]
        if not isinstance(included, ast.Name) or included.id not in routers:
            continue
        router = routers[included.id]
        prefix = _keyword_string(call, _PREFIX_KEYWORDS)
        if prefix is not None:
            if call.func.attr == "register_blueprint":
                router.prefix = prefix
            else:
                router.prefix = join_paths(prefix, router.prefix) if router.prefix else prefix
        router.security.extend(_dependency_security(_keyword(call, "dependencies"), markers))
    return routers


def _looks_like_router(call: ast.Call) -> bool:
    name = _dotted_name(call.func)
    last = name.rsplit(".", 1)[-1]
    return last in {"APIRouter", "FastAPI", "Flask", "Blueprint", "Starlette", "Router"}


def _endpoints_for_function(
    func: ast.FunctionDef | ast.AsyncFunctionDef,
    routers: dict[str, _Router],
    relative_path: str,
    markers: SecurityMarkers,
) -> list[Endpoint]:
    routes: list[tuple[ast.Call, list[str], float]] = []
    decorator_security: list[SecurityRequirement] = []
    for decorator in func.decorator_list:
        route = _route_decorator(decorator)
        if route is not None:
            routes.append(route)
            continue
        name = _dotted_name(decorator.func if isinstance(decorator, ast.Call) else decorator)
        if markers.matches(name):
            decorator_security.append(SecurityRequirement(scheme=name))

    if not routes:
        return []

    signature_security = _signature_security(func, markers)
    query_params = _signature_parameters(func)
    annotations = _annotation_names(func)

    endpoints: list[Endpoint] = []
    for call, methods, confidence in routes:
        raw_path = _route_path(call)
        if raw_path is None:
            continue
        owner = call.func.value if isinstance(call.func, ast.Attribute) else None
        router = routers.get(owner.id) if isinstance(owner, ast.Name) else None
        prefix = router.prefix if router is not None else ""
        template = join_paths(prefix, raw_path) if prefix else normalize_path(raw_path)

        security = [
            *(router.security if router is not None else []),
            *decorator_security,
            *_dependency_security(_keyword(call, "dependencies"), markers),
            *signature_security,
        ]
        responses = _status_responses(call)
        parameters = merge_parameters(path_parameters(template, annotations), query_params)
        for method in methods:
            endpoints.append(
                Endpoint(
                    method=method,
                    path_template=template,
                    parameters=parameters,
                    responses=responses,
                    security=tuple(dict.fromkeys(security)),
                    location=SourceLocation(relative_path, call.lineno),
                    confidence=confidence,
                    origin="python",
                    operation_id=func.name,
                )
            )
    return endpoints


def _route_decorator(decorator: ast.expr) -> tuple[ast.Call, list[str], float] | None:
    if not (isinstance(decorator, ast.Call) and isinstance(decorator.func, ast.Attribute)):
        return None
    attr = decorator.func.attr
    if attr in _VERB_ATTRS:
        return (decorator, [attr.upper()], CONFIDENCE_EXACT)
    if attr not in _ROUTE_ATTRS:
        return None
    methods_node = _keyword(decorator, "methods")
    if methods_node is None:
        return (decorator, ["GET"], CONFIDENCE_FRAMEWORK_DEFAULT)
    if not isinstance(methods_node, (ast.List, ast.Tuple, ast.Set)):
        return None
    methods = [
        element.value.upper()
        for element in methods_node.elts
        if isinstance(element, ast.Constant) and isinstance(element.value, str)
    ]
    methods = [method for method in dict.fromkeys(methods) if method in HTTP_METHODS]
    if not methods:
        return None
    return (decorator, methods, CONFIDENCE_EXACT)


def _route_path(call: ast.Call) -> str | None:
    if call.args:
        first = call.args[0]
        if isinstance(first, ast.Constant) and isinstance(first.value, str):
            return first.value
        return None
    value = _keyword_string(call, ("path", "rule"))
    return value


def _status_responses(call: ast.Call) -> tuple[ResponseSpec, ...]:
    node = _keyword(call, "status_code")
    if node is None:
        return ()
    if isinstance(node, ast.Constant) and isinstance(node.value, int):
        return (ResponseSpec(status=str(node.value)),)
    match = _HTTP_STATUS_RE.search(_dotted_name(node))
    if match:
        return (ResponseSpec(status=match.group(1)),)
    return ()


def _signature_security(
    func: ast.FunctionDef | ast.AsyncFunctionDef,
    markers: SecurityMarkers,
) -> list[SecurityRequirement]:
    found: list[SecurityRequirement] = []
    for node in _signature_nodes(func):
        for call in _calls_in(node):
            requirement = _security_from_dependency(call, markers)
            if requirement is not None:
                found.append(requirement)
    return found


def _signature_nodes(func: ast.FunctionDef | ast.AsyncFunctionDef) -> list[ast.expr]:
    args = func.args
    nodes: list[ast.expr] = [*args.defaults, *(d for d in args.kw_defaults if d is not None)]
    for arg in [*args.posonlyargs, *args.args, *args.kwonlyargs]:
        if arg.annotation is not None:
            nodes.append(arg.annotation)
    return nodes


def _calls_in(node: ast.expr) -> list[ast.Call]:
    return [child for child in ast.walk(node) if isinstance(child, ast.Call)]


def _dependency_security(node: ast.expr | None, markers: SecurityMarkers) -> list[SecurityRequirement]:
    if not isinstance(node, (ast.List, ast.Tuple)):
        return []
    found: list[SecurityRequirement] = []
    for element in node.elts:
        if isinstance(element, ast.Call):
            requirement = _security_from_dependency(element, markers)
            if requirement is not None:
                found.append(requirement)
    return found


def _security_from_dependency(call: ast.Call, markers: SecurityMarkers) -> SecurityRequirement | None:
    factory = _dotted_name(call.func).rsplit(".", 1)[-1]
    if factory not in _SECURITY_FACTORIES:
        return None
    dependency = _dotted_name(call.args[0]) if call.args else ""
    if factory == "Security" or markers.matches(dependency):
        scopes = _keyword(call, "scopes")
        scope_values: tuple[str, ...] = ()
        if isinstance(scopes, (ast.List, ast.Tuple)):
            scope_values = tuple(
                sorted(
                    element.value
                    for element in scopes.elts
                    if isinstance(element, ast.Constant) and isinstance(element.value, str)
                )
            )
        return SecurityRequirement(scheme=dependency or factory, scopes=scope_values)
    return None


def _signature_parameters(func: ast.FunctionDef | ast.AsyncFunctionDef) -> list[Parameter]:
    args = func.args
    positional = [*args.posonlyargs, *args.args]
    defaults: dict[str, ast.expr | None] = {arg.arg: None for arg in [*positional, *args.kwonlyargs]}
    for arg, default in zip(positional[len(positional) - len(args.defaults) :], args.defaults):
        defaults[arg.arg] = default
    for arg, default in zip(args.kwonlyargs, args.kw_defaults):
        defaults[arg.arg] = default

    params: list[Parameter] = []
    for arg in [*positional, *args.kwonlyargs]:
        default = defaults.get(arg.arg)
        factory_call = default if isinstance(default, ast.Call) else _annotated_factory(arg.annotation)
        if factory_call is None:
            continue
        factory = _dotted_name(factory_call.func).rsplit(".", 1)[-1]
        location = _PARAM_FACTORIES.get(factory)
        if location is None:
            continue
        if factory_call is default:
            required = _factory_required(factory_call)
        else:
            required = default is None
        name = _keyword_string(factory_call, ("alias",)) or arg.arg
        if location == "header" and factory == "Header" and name == arg.arg:
            name = arg.arg.replace("_", "-")
        params.append(
            Parameter(
                name=name,
                location=location,
                required=required,
                type=SchemaRef(type=_annotation_type(arg.annotation)),
            )
        )
    return params


def _annotated_factory(annotation: ast.expr | None) -> ast.Call | None:
    if not isinstance(annotation, ast.Subscript):
        return None
    if _dotted_name(annotation.value).rsplit(".", 1)[-1] != "Annotated":
        return None
    inner = annotation.slice
    elements = inner.elts if isinstance(inner, ast.Tuple) else [inner]
    for element in elements[1:]:
        if isinstance(element, ast.Call):
            return element
    return None


def _factory_required(call: ast.Call) -> bool:
    if call.args:
        first = call.args[0]
        return isinstance(first, ast.Constant) and first.value is Ellipsis
    default = _keyword(call, "default")
    if default is None:
        return _keyword(call, "default_factory") is None
    return isinstance(default, ast.Constant) and default.value is Ellipsis


def _annotation_names(func: ast.FunctionDef | ast.AsyncFunctionDef) -> dict[str, str]:
    names: dict[str, str] = {}
    for arg in [*func.args.posonlyargs, *func.args.args, *func.args.kwonlyargs]:
        type_name = _annotation_type(arg.annotation)
        if type_name:
            names[arg.arg] = type_name
    return names


def _annotation_type(annotation: ast.expr | None) -> str | None:
    if annotation is None:
        return None
    if isinstance(annotation, ast.Subscript) and _dotted_name(annotation.value).endswith("Annotated"):
        inner = annotation.slice
        first = inner.elts[0] if isinstance(inner, ast.Tuple) and inner.elts else inner
        return _annotation_type(first)
    name = _dotted_name(annotation)
    return name or None


def _keyword(call: ast.Call, name: str) -> ast.expr | None:
    for keyword in call.keywords:
        if keyword.arg == name:
            return keyword.value
    return None


def _keyword_string(call: ast.Call, names: tuple[str, ...]) -> str | None:
    for name in names:
        node = _keyword(call, name)
        if isinstance(node, ast.Constant) and isinstance(node.value, str):
            return node.value
    return None


def _dotted_name(node: ast.expr | None) -> str:
    if isinstance(node, ast.Call):
        return _dotted_name(node.func)
    parts: list[str] = []
    while isinstance(node, ast.Attribute):
        parts.append(node.attr)
        node = node.value
    if isinstance(node, ast.Name):
        parts.append(node.id)
    return ".".join(reversed(parts))


__all__ = ["PythonRouteExtractor"]
