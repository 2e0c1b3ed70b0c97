"""JSON API routes. The caller's identity arrives as the ``X-Owner-Id`` header.

Handlers are plain ``def`` so the blocking store work runs in the threadpool.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .. import __version__
from ..dependencies import DependencySpec
from ..errors import UnauthorizedError
from ..graph import TaskGraph
from ..models import DependencyType

router = APIRouter(prefix="/api")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _graph(req: Request) -> TaskGraph:
    return req.app.state.graph


def require_owner(x_owner_id: str | None = Header(default=None)) -> str:
    owner = (x_owner_id or "").strip()
    if not owner:
        raise UnauthorizedError("missing X-Owner-Id header")
    return owner


def _not_found(message: str) -> JSONResponse:
    return JSONResponse({"error": "not_found", "message": message}, status_code=404)


# ---------------------------------------------------------------------------
# Bodies
# ---------------------------------------------------------------------------


class TaskCreate(BaseModel):
    title: str
    parent_id: int | None = None
    completion_percentage: int = 0


class ParentUpdate(BaseModel):
    parent_id: int | None = None


class CompleteUpdate(BaseModel):
    is_completed: bool = True


class ProgressUpdate(BaseModel):
    completion_percentage: int


class DependencyCreate(BaseModel):
    dependent_task_id: int
    prerequisite_task_id: int
    dependency_type: str | int = DependencyType.FINISH_TO_START.value
    description: str | None = Field(default=None, max_length=500)

    def to_spec(self) -> DependencySpec:
        return DependencySpec(
            dependent_task_id=self.dependent_task_id,
            prerequisite_task_id=self.prerequisite_task_id,
            dependency_type=str(self.dependency_type),
            description=self.description,
        )


class DependencyUpdate(BaseModel):
    dependency_type: str | int | None = None
    description: str | None = Field(default=None, max_length=500)

    @property
    def clears_description(self) -> bool:
        """An explicit ``"description": null`` removes the note."""
        return "description" in self.model_fields_set and self.description is None


class BulkDependencyCreate(BaseModel):
    dependencies: list[DependencyCreate]


class BulkDependencyDelete(BaseModel):
    ids: list[int]


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


@router.get("/health")
def api_health() -> dict[str, Any]:
    return {"ok": True, "version": __version__}


@router.post("/tasks", status_code=201)
def api_create_task(request: Request, body: TaskCreate, owner: str = Depends(require_owner)):
    task = _graph(request).create_task(
        owner,
        body.title,
        parent_id=body.parent_id,
        completion_percentage=body.completion_percentage,
    )
    return task.to_dict()


@router.get("/tasks")
def api_list_tasks(
    request: Request,
    roots_only: bool = False,
    include_inactive: bool = False,
    limit: int | None = None,
    owner: str = Depends(require_owner),
):
    tasks = _graph(request).list_tasks(
        owner,
        roots_only=roots_only,
        include_inactive=include_inactive,
        limit=limit,
    )
    return [task.to_dict() for task in tasks]


@router.get("/tasks/{task_id}")
def api_get_task(request: Request, task_id: int, owner: str = Depends(require_owner)):
    graph = _graph(request)
    payload = graph.get_task(owner, task_id).to_dict()
    payload["depth"] = graph.depth_of(owner, task_id)
    return payload


@router.delete("/tasks/{task_id}")
def api_delete_task(request: Request, task_id: int, owner: str = Depends(require_owner)):
    deactivated = _graph(request).delete_task(owner, task_id)
    return {"task_id": task_id, "deactivated": deactivated}


@router.get("/tasks/{task_id}/deletion-check")
def api_deletion_check(request: Request, task_id: int, owner: str = Depends(require_owner)):
    return _graph(request).deletion_check(owner, task_id).to_dict()


@router.put("/tasks/{task_id}/parent")
def api_set_parent(
    request: Request,
    task_id: int,
    body: ParentUpdate,
    owner: str = Depends(require_owner),
):
    return _graph(request).set_parent(owner, task_id, body.parent_id).to_dict()


@router.delete("/tasks/{task_id}/parent")
def api_remove_parent(request: Request, task_id: int, owner: str = Depends(require_owner)):
    return _graph(request).remove_parent(owner, task_id).to_dict()


@router.get("/tasks/{task_id}/children")
def api_children(request: Request, task_id: int, owner: str = Depends(require_owner)):
    graph = _graph(request)
    children = graph.list_children(owner, task_id)
    return {
        "task_id": task_id,
        "children": [task.to_dict() for task in children],
        "descendant_count": graph.count_descendants(owner, task_id),
    }


@router.patch("/tasks/{task_id}/complete")
def api_complete_task(
    request: Request,
    task_id: int,
    body: CompleteUpdate,
    owner: str = Depends(require_owner),
):
    task = _graph(request).complete_task(owner, task_id, completed=body.is_completed)
    return task.to_dict()


@router.patch("/tasks/{task_id}/progress")
def api_update_progress(
    request: Request,
    task_id: int,
    body: ProgressUpdate,
    owner: str = Depends(require_owner),
):
    task = _graph(request).update_progress(owner, task_id, body.completion_percentage)
    return task.to_dict()


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


@router.get("/dependencies")
def api_list_dependencies(
    request: Request,
    dependent_task_id: int | None = None,
    prerequisite_task_id: int | None = None,
    dependency_type: str | None = None,
    sort_by: str = "created_at",
    ascending: bool = False,
    owner: str = Depends(require_owner),
):
    rows = _graph(request).list_dependencies(
        owner,
        dependent_task_id=dependent_task_id,
        prerequisite_task_id=prerequisite_task_id,
        dependency_type=dependency_type,
        sort_by=sort_by,
        ascending=ascending,
    )
    return [dep.to_dict() for dep in rows]


@router.post("/dependencies", status_code=201)
def api_create_dependency(
    request: Request,
    body: DependencyCreate,
    owner: str = Depends(require_owner),
):
    dep = _graph(request).create_dependency(
        owner,
        body.dependent_task_id,
        body.prerequisite_task_id,
        DependencyType.parse(body.dependency_type),
        body.description,
    )
    return dep.to_dict()


@router.post("/dependencies/bulk")
def api_create_dependencies(
    request: Request,
    body: BulkDependencyCreate,
    owner: str = Depends(require_owner),
):
    specs = [item.to_spec() for item in body.dependencies]
    created = _graph(request).create_dependencies(owner, specs)
    return {
        "requested": len(specs),
        "created": [dep.to_dict() for dep in created],
    }


@router.post("/dependencies/bulk-delete")
def api_delete_dependencies(
    request: Request,
    body: BulkDependencyDelete,
    owner: str = Depends(require_owner),
):
    deleted = _graph(request).delete_dependencies(owner, body.ids)
    return {"requested": len(body.ids), "deleted": deleted}


@router.get("/dependencies/{dependency_id}")
def api_get_dependency(
    request: Request, dependency_id: int, owner: str = Depends(require_owner)
):
    return _graph(request).get_dependency(owner, dependency_id).to_dict()


@router.put("/dependencies/{dependency_id}")
def api_update_dependency(
    request: Request,
    dependency_id: int,
    body: DependencyUpdate,
    owner: str = Depends(require_owner),
):
    dep = _graph(request).update_dependency(
        owner,
        dependency_id,
        dependency_type=body.dependency_type,
        description=body.description,
        clear_description=body.clears_description,
    )
    return dep.to_dict()


@router.delete("/dependencies/{dependency_id}")
def api_delete_dependency(
    request: Request, dependency_id: int, owner: str = Depends(require_owner)
):
    if not _graph(request).delete_dependency(owner, dependency_id):
        return _not_found(f"dependency not found: {dependency_id}")
    return {"deleted": True, "id": dependency_id}


@router.get("/dependencies/task/{task_id}/prerequisites")
def api_prerequisites(request: Request, task_id: int, owner: str = Depends(require_owner)):
    return [dep.to_dict() for dep in _graph(request).list_prerequisites(owner, task_id)]


@router.get("/dependencies/task/{task_id}/dependents")
def api_dependents(request: Request, task_id: int, owner: str = Depends(require_owner)):
    return [dep.to_dict() for dep in _graph(request).list_dependents(owner, task_id)]


@router.get("/dependencies/task/{task_id}/is-blocked")
def api_is_blocked(request: Request, task_id: int, owner: str = Depends(require_owner)):
    return {"task_id": task_id, "is_blocked": _graph(request).is_blocked(owner, task_id)}


@router.get("/dependencies/task/{task_id}/can-start")
def api_can_start(request: Request, task_id: int, owner: str = Depends(require_owner)):
    return {"task_id": task_id, "can_start": _graph(request).can_start(owner, task_id)}


@router.get("/dependencies/task/{task_id}/can-finish")
def api_can_finish(request: Request, task_id: int, owner: str = Depends(require_owner)):
    return {"task_id": task_id, "can_finish": _graph(request).can_finish(owner, task_id)}
