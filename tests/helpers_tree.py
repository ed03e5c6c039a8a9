"""Helpers for building synthetic contracts and source trees in tests."""

from __future__ import annotations

from pathlib import Path

from api_conform.models import ActualModel, Endpoint, SourceLocation, SpecModel

USERS_SPEC = """\
openapi: 3.0.3
info:
  title: Users API
  version: 1.0.0
paths:
  /users:
    get:
      operationId: listUsers
      parameters:
        - name: limit
          in: query
          schema:
            type: integer
      responses:
        "200":
          description: ok
    post:
      operationId: createUser
      security:
        - bearerAuth: []
      requestBody:
        required: true
        content:
          application/json:
            schema:
              $ref: "#/components/schemas/User"
      responses:
        "201":
          description: created
        "409":
          description: conflict
          content:
            application/json:
              schema:
                $ref: "#/components/schemas/Error"
  /users/{id}:
    parameters:
      - name: id
        in: path
        required: true
        schema:
          type: string
    get:
      operationId: getUser
      responses:
        "200":
          description: ok
        "404":
          description: missing
          content:
            application/json:
              schema:
                $ref: "#/components/schemas/Error"
    delete:
      operationId: deleteUser
      security:
        - bearerAuth: []
      responses:
        "204":
          description: deleted
components:
  securitySchemes:
    bearerAuth:
      type: http
      scheme: bearer
  schemas:
    User:
      type: object
      properties:
        id:
          type: string
        name:
          type: string
    Error:
      type: object
      properties:
        code:
          type: string
        message:
          type: string
"""

USERS_APP = """\
from fastapi import APIRouter, Depends, FastAPI, Query

from app.auth import get_current_user

app = FastAPI()
router = APIRouter(prefix="/users")


@router.get("")
def list_users(limit: int = Query(20)):
    return []


@router.post("", status_code=201)
def create_user(payload: dict, user=Depends(get_current_user)):
    return payload


@router.get("/{id}")
def get_user(id: str):
    return {}


@router.delete("/{id}", status_code=204)
def delete_user(id: str, user=Depends(get_current_user)):
    return None


app.include_router(router)
"""

UNPROTECTED_DELETE_SPEC = """\
openapi: 3.0.3
info:
  title: Users API
  version: "1"
paths:
  /api/users/{id}:
    delete:
      operationId: deleteUser
      responses:
        "204":
          description: deleted
"""

UNPROTECTED_DELETE_APP = """\
from fastapi import FastAPI

app = FastAPI()


@app.delete("/api/users/{id}", status_code=204)
def delete_user(id: str):
    return None
"""


def write_tree(root: Path, files: dict[str, str]) -> Path:
    """Write ``files`` (relative path -> text) under ``root`` and return ``root``."""
    for rel_path, content in files.items():
        target = root / rel_path
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
    return root


def write_project(
    tmp_path: Path,
    *,
    spec: str = USERS_SPEC,
    sources: dict[str, str] | None = None,
    spec_name: str = "openapi.yaml",
) -> tuple[Path, Path]:
    """Create ``openapi.yaml`` plus a ``src`` tree; return (spec path, source root)."""
    spec_path = tmp_path / spec_name
    spec_path.write_text(spec, encoding="utf-8")
    source_root = write_tree(tmp_path / "src", sources if sources is not None else {"app/users.py": USERS_APP})
    return (spec_path, source_root)


def endpoint(
    method: str,
    path: str,
    *,
    file: str = "app.py",
    line: int | None = 1,
    **kwargs: object,
) -> Endpoint:
    return Endpoint(
        method=method,
        path_template=path,
        location=SourceLocation(file, line),
        **kwargs,  # type: ignore[arg-type]
    )


def spec_model(*endpoints: Endpoint) -> SpecModel:
    return SpecModel(title="t", version="1", endpoints=tuple(endpoints))


def actual_model(*endpoints: Endpoint) -> ActualModel:
    return ActualModel(root="src", endpoints=tuple(endpoints))
