"""Contract loading: versions, references, parameters, security, findings."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from api_conform.spec_loader import ParseError, load_spec, load_spec_file, media_type_for_path
from tests.helpers_tree import USERS_SPEC


def _load_yaml(text: str, **kwargs: object):
    return load_spec(text.encode("utf-8"), "application/yaml", source_name="openapi.yaml", **kwargs)


def test_load_openapi3_yaml_builds_sorted_endpoints() -> None:
    model = _load_yaml(USERS_SPEC)

    assert model.title == "Users API"
    assert model.version == "1.0.0"
    assert model.schemas == ("Error", "User")
    labels = [endpoint.label for endpoint in model.endpoints]
    assert labels == ["GET /users", "POST /users", "DELETE /users/{id}", "GET /users/{id}"]
    assert all(endpoint.origin == "spec" and endpoint.confidence == 1.0 for endpoint in model.endpoints)
    assert model.findings == ()


def test_path_level_parameters_and_request_body_are_merged() -> None:
    model = _load_yaml(USERS_SPEC)
    by_label = {endpoint.label: endpoint for endpoint in model.endpoints}

    get_user = by_label["GET /users/{id}"]
    assert [(p.name, p.location, p.required) for p in get_user.parameters] == [("id", "path", True)]

    create = by_label["POST /users"]
    body = create.parameters_in("body")[0]
    assert body.required is True
    assert body.type.ref == "User"
    assert body.type.properties == ("id", "name")
    assert create.status_codes() == {"201", "409"}
    error_schema = create.responses[1].schema
    assert error_schema is not None and error_schema.shape() == "{code,message}"


def test_operation_security_overrides_document_security() -> None:
    text = """\
openapi: 3.1.0
info: {title: t, version: "1"}
security:
  - apiKey: []
paths:
  /items:
    get:
      responses: {"200": {description: ok}}
    post:
      security: []
      responses: {"201": {description: ok}}
    put:
      security:
        - oauth: [write, read]
      responses: {"200": {description: ok}}
"""
    by_method = {endpoint.method: endpoint for endpoint in _load_yaml(text).endpoints}
    assert [req.scheme for req in by_method["GET"].security] == ["apiKey"]
    assert by_method["POST"].security == ()
    assert by_method["PUT"].security[0].scopes == ("read", "write")


def test_swagger2_json_applies_base_path_and_maps_form_data() -> None:
    document = {
        "swagger": "2.0",
        "info": {"title": "Pets", "version": "2"},
        "basePath": "/v2",
        "paths": {
            "/pets/{petId}": {
                "post": {
                    "parameters": [
                        {"name": "petId", "in": "path", "type": "integer"},
                        {"name": "name", "in": "formData", "type": "string"},
                        {"name": "X-Request-Id", "in": "header", "type": "string"},
                    ],
                    "responses": {"default": {"description": "error", "schema": {"$ref": "#/definitions/Err"}}},
                }
            }
        },
        "definitions": {"Err": {"type": "object", "properties": {"detail": {"type": "string"}}}},
    }
    model = load_spec(json.dumps(document).encode("utf-8"), "application/json")
    (only,) = model.endpoints

    assert model.base_path == "/v2"
    assert only.path_template == "/v2/pets/{petId}"
    assert {(p.name, p.location) for p in only.parameters} == {
        ("petId", "path"),
        ("name", "body"),
        ("X-Request-Id", "header"),
    }
    assert only.parameters_in("path")[0].type.type == "integer"
    assert only.responses[0].status == "default"
    assert only.responses[0].is_error()


def test_server_url_path_is_prefixed_unless_disabled() -> None:
    text = """\
openapi: 3.0.0
info: {title: t, version: "1"}
servers:
  - url: https://api.example.com/api/v1/
paths:
  /orders: {get: {responses: {"200": {description: ok}}}}
"""
    assert _load_yaml(text).endpoints[0].path_template == "/api/v1/orders"
    assert _load_yaml(text, apply_base_path=False).endpoints[0].path_template == "/orders"


def test_unresolvable_reference_is_a_parse_error() -> None:
    text = """\
openapi: 3.0.0
info: {title: t, version: "1"}
paths:
  /orders:
    get:
      responses:
        "200":
          description: ok
          content:
            application/json:
              schema:
                $ref: "#/components/schemas/Missing"
"""
    with pytest.raises(ParseError, match="Missing"):
        _load_yaml(text)


def test_external_and_circular_references_are_rejected() -> None:
    external = """\
openapi: 3.0.0
info: {title: t, version: "1"}
paths:
  /a:
    $ref: "other.yaml#/paths/~1a"
"""
    with pytest.raises(ParseError, match="only local references"):
        _load_yaml(external)

    circular = """\
openapi: 3.0.0
info: {title: t, version: "1"}
paths:
  /a:
    get:
      parameters:
        - $ref: "#/components/parameters/A"
      responses: {"200": {description: ok}}
components:
  parameters:
    A: {$ref: "#/components/parameters/B"}
    B: {$ref: "#/components/parameters/A"}
"""
    with pytest.raises(ParseError, match="Circular"):
        _load_yaml(circular)


def test_self_referential_schemas_load_without_expanding_forever() -> None:
    text = """\
openapi: 3.0.0
info: {title: t, version: "1"}
paths:
  /trees:
    post:
      requestBody:
        required: true
        content:
          application/json:
            schema: {$ref: "#/components/schemas/Tree"}
      responses:
        "201":
          description: created
          content:
            application/json:
              schema: {$ref: "#/components/schemas/Node"}
components:
  schemas:
    Tree:
      type: array
      items: {$ref: "#/components/schemas/Tree"}
    Node:
      type: object
      properties:
        children:
          type: array
          items: {$ref: "#/components/schemas/Node"}
"""
    model = _load_yaml(text)

    create = model.endpoints[0]
    body = create.parameters_in("body")[0]
    assert body.type.ref == "Tree"
    assert body.type.type == "array[Tree]"
    assert model.findings == ()


@pytest.mark.parametrize(
    "text",
    [
        "just a string",
        "info: {title: t}\npaths: {}\n",
        "openapi: 2.5.0\npaths: {}\n",
        "swagger: '1.2'\npaths: {}\n",
        "openapi: 3.0.0\npaths: [1, 2]\n",
        "openapi: 3.0.0\npaths:\n  /a:\n    fetch: {}\n",
        "openapi: 3.0.0\npaths: {/a: {get: {}}\n",
    ],
)
def test_malformed_documents_raise_parse_error(text: str) -> None:
    with pytest.raises(ParseError):
        _load_yaml(text)


def test_unsupported_media_type_and_suffix_are_parse_errors(tmp_path: Path) -> None:
    with pytest.raises(ParseError, match="media type"):
        load_spec(b"{}", "text/plain")
    with pytest.raises(ParseError, match="suffix"):
        media_type_for_path(tmp_path / "spec.txt")
    assert media_type_for_path("api.YML") == "application/yaml"


def test_load_spec_file_reports_missing_file(tmp_path: Path) -> None:
    with pytest.raises(ParseError, match="Cannot read"):
        load_spec_file(tmp_path / "absent.yaml")


def test_extensions_produce_info_findings_and_duplicates_warn() -> None:
    text = """\
openapi: 3.0.0
info: {title: t, version: "1"}
x-owner: platform
paths:
  /a/{id}:
    x-internal: true
    get:
      responses: {"200": {description: ok}}
  /a/{name}:
    get:
      x-rate-limit: 10
      responses: {"200": {description: ok}}
"""
    model = _load_yaml(text)
    extension_messages = sorted(
        finding.message for finding in model.findings if finding.rule_id == "spec_extension"
    )
    assert len(extension_messages) == 3
    assert any("x-owner" in message for message in extension_messages)
    assert all(
        finding.severity == "info" for finding in model.findings if finding.rule_id == "spec_extension"
    )

    duplicates = [finding for finding in model.findings if finding.rule_id == "duplicate_route"]
    assert len(duplicates) == 1
    assert duplicates[0].severity == "warning"


def test_declared_endpoints_point_at_operation_lines() -> None:
    model = _load_yaml(USERS_SPEC)
    by_label = {endpoint.label: endpoint for endpoint in model.endpoints}
    lines = USERS_SPEC.splitlines()

    location = by_label["POST /users"].location
    assert location is not None and location.file == "openapi.yaml"
    assert lines[location.line - 1].strip() == "post:"

    delete_location = by_label["DELETE /users/{id}"].location
    assert delete_location is not None
    assert lines[delete_location.line - 1].strip() == "delete:"
