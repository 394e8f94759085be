"""
api/routes/v1/projects.py -- Projects, collaborator shares, sections and tasks.

Every handler that touches an existing resource asks the AccessResolver first
and calls .require() (owner or collaborator) or .require_owner() (owner only)
on the decision before doing any work. Unknown ids are 404, known ids the
caller may not see are 403.

Routes:
  POST   /api/projects                          -- create; caller becomes owner
  GET    /api/users/{user_id}/projects          -- owned + shared, with open task counts (cached)
  GET    /api/projects/{id}                     -- owner or collaborator
  PUT    /api/projects/{id}                     -- owner or collaborator
  DELETE /api/projects/{id}                     -- owner only
  POST   /api/projects/{id}/share               -- owner only
  GET    /api/projects/{id}/shares              -- owner or collaborator
  DELETE /api/projects/{id}/shares/{user_id}    -- owner only
  GET    /api/projects/{id}/sections            -- owner or collaborator (?include_archived=true)
  POST   /api/sections                          -- access to the project
  POST   /api/sections/{id}/archive             -- access to the section
  POST   /api/sections/{id}/unarchive           -- access to the section
  DELETE /api/sections/{id}                     -- access to the section
  GET    /api/sections/{id}/tasks               -- access to the section
  POST   /api/tasks                             -- access to the section
  GET    /api/tasks/{id}                        -- access to the task
  PUT    /api/tasks/{id}                        -- access to the task
  DELETE /api/tasks/{id}                        -- access to the task

Caching: the per-user project listing is held in the TTL cache under
"projects:user:<id>". Any write that can change a listing (project, share,
section or task) drops every "projects:" key, because a single project shows
up in the listings of its owner and all of its collaborators.
A listing read that races with a write is not cached: the cache refuses a
value loaded before the most recent invalidation.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.exc import IntegrityError

from api.models import (
    ProjectCreate,
    ProjectResponse,
    ProjectUpdate,
    SectionCreate,
    SectionResponse,
    ShareCreate,
    ShareResponse,
    SuccessResponse,
    TaskCreate,
    TaskResponse,
    TaskUpdate,
)
from auth.dependencies import get_current_principal, require_self
from auth.models import Principal
from auth.store import CredentialStore
from cache.store import TTLCache
from core.errors import NotFound
from todo.access import AccessResolver
from todo.models import Project, ProjectShare, Section, Task
from todo.store import TodoStore

logger = logging.getLogger("tasktrack.api.projects")

_LISTING_PREFIX = "projects:"

router = APIRouter()


def _listing_key(user_id: int) -> str:
    return f"{_LISTING_PREFIX}user:{user_id}"


def _invalidate_listings(request: Request) -> None:
    cache: TTLCache = request.app.state.cache
    cache.invalidate(_LISTING_PREFIX)


def _project_response(store: TodoStore, project: Project, is_owner: bool) -> ProjectResponse:
    counts = store.count_open_tasks([project.id])
    return ProjectResponse.from_domain(project, is_owner=is_owner, task_count=counts.get(project.id, 0))


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------


@router.post("/projects", response_model=ProjectResponse, status_code=201)
def create_project(
    request: Request,
    body: ProjectCreate,
    principal: Principal = Depends(get_current_principal),
) -> ProjectResponse:
    store: TodoStore = request.app.state.todo_store
    project_id = store.create_project(Project(user_id=principal.user_id, name=body.name))
    _invalidate_listings(request)
    logger.info("Project created: project_id=%d user_id=%d", project_id, principal.user_id)
    return ProjectResponse.from_domain(store.get_project(project_id), is_owner=True)


@router.get("/users/{user_id}/projects", response_model=list[ProjectResponse])
def list_projects(
    request: Request,
    user_id: int,
    principal: Principal = Depends(get_current_principal),
) -> list[ProjectResponse]:
    """Owned projects (in the owner's order) followed by projects shared with the caller."""
    require_self(user_id, principal)
    cache: TTLCache = request.app.state.cache
    key = _listing_key(user_id)
    cached = cache.get(key)
    if cached is not None:
        return cached

    generation = cache.generation
    store: TodoStore = request.app.state.todo_store
    owned = store.list_owned_projects(user_id)
    shared = store.list_shared_projects(user_id)
    counts = store.count_open_tasks([p.id for p in owned + shared])
    listing = [ProjectResponse.from_domain(p, is_owner=True, task_count=counts.get(p.id, 0)) for p in owned]
    listing += [ProjectResponse.from_domain(p, is_owner=False, task_count=counts.get(p.id, 0)) for p in shared]
    cache.set(key, listing, generation=generation)
    return listing


@router.get("/projects/{project_id}", response_model=ProjectResponse)
def get_project(
    request: Request,
    project_id: int,
    principal: Principal = Depends(get_current_principal),
) -> ProjectResponse:
    resolver: AccessResolver = request.app.state.access_resolver
    decision = resolver.resolve_project(principal, project_id).require()
    return _project_response(request.app.state.todo_store, decision.project, decision.is_owner)


@router.put("/projects/{project_id}", response_model=ProjectResponse)
def update_project(
    request: Request,
    project_id: int,
    body: ProjectUpdate,
    principal: Principal = Depends(get_current_principal),
) -> ProjectResponse:
    resolver: AccessResolver = request.app.state.access_resolver
    store: TodoStore = request.app.state.todo_store
    decision = resolver.resolve_project(principal, project_id).require()
    store.update_project(project_id, name=body.name)
    _invalidate_listings(request)
    return _project_response(store, store.get_project(project_id), decision.is_owner)


@router.delete("/projects/{project_id}", response_model=SuccessResponse)
def delete_project(
    request: Request,
    project_id: int,
    principal: Principal = Depends(get_current_principal),
) -> SuccessResponse:
    resolver: AccessResolver = request.app.state.access_resolver
    store: TodoStore = request.app.state.todo_store
    resolver.resolve_project(principal, project_id).require_owner("delete the project")
    store.delete_project(project_id)
    _invalidate_listings(request)
    logger.info("Project deleted: project_id=%d user_id=%d", project_id, principal.user_id)
    return SuccessResponse()


# ---------------------------------------------------------------------------
# Shares
# ---------------------------------------------------------------------------


@router.post("/projects/{project_id}/share", response_model=ShareResponse, status_code=201)
def share_project(
    request: Request,
    project_id: int,
    body: ShareCreate,
    principal: Principal = Depends(get_current_principal),
) -> ShareResponse:
    """Grant another user collaborator access. Owner only."""
    resolver: AccessResolver = request.app.state.access_resolver
    store: TodoStore = request.app.state.todo_store
    users: CredentialStore = request.app.state.credential_store

    resolver.resolve_project(principal, project_id).require_owner("share the project")
    target = users.get_by_username(body.username)
    if target is None:
        raise NotFound("User not found.")
    if target.id == principal.user_id:
        raise HTTPException(
            status_code=400,
            detail={"code": "cannot_share_with_self", "message": "You cannot share a project with yourself."},
        )

    try:
        store.add_share(ProjectShare(project_id=project_id, user_id=target.id, shared_by_user_id=principal.user_id))
    except IntegrityError as exc:
        raise HTTPException(
            status_code=409,
            detail={"code": "already_shared", "message": "Project is already shared with that user."},
        ) from exc

    _invalidate_listings(request)
    logger.info("Project shared: project_id=%d with user_id=%d", project_id, target.id)
    return ShareResponse.from_domain(store.get_share(project_id, target.id), target.username)


@router.get("/projects/{project_id}/shares", response_model=list[ShareResponse])
def list_shares(
    request: Request,
    project_id: int,
    principal: Principal = Depends(get_current_principal),
) -> list[ShareResponse]:
    resolver: AccessResolver = request.app.state.access_resolver
    store: TodoStore = request.app.state.todo_store
    users: CredentialStore = request.app.state.credential_store

    resolver.resolve_project(principal, project_id).require()
    responses = []
    for share in store.list_shares(project_id):
        user = users.get_by_id(share.user_id)
        responses.append(ShareResponse.from_domain(share, user.username if user else None))
    return responses


@router.delete("/projects/{project_id}/shares/{user_id}", response_model=SuccessResponse)
def remove_share(
    request: Request,
    project_id: int,
    user_id: int,
    principal: Principal = Depends(get_current_principal),
) -> SuccessResponse:
    resolver: AccessResolver = request.app.state.access_resolver
    store: TodoStore = request.app.state.todo_store

    resolver.resolve_project(principal, project_id).require_owner("remove collaborators")
    if not store.delete_share(project_id, user_id):
        raise NotFound("Share not found.")
    _invalidate_listings(request)
    logger.info("Project unshared: project_id=%d from user_id=%d", project_id, user_id)
    return SuccessResponse()


# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------


@router.get("/projects/{project_id}/sections", response_model=list[SectionResponse])
def list_sections(
    request: Request,
    project_id: int,
    include_archived: bool = False,
    principal: Principal = Depends(get_current_principal),
) -> list[SectionResponse]:
    resolver: AccessResolver = request.app.state.access_resolver
    store: TodoStore = request.app.state.todo_store
    resolver.resolve_project(principal, project_id).require()
    sections = store.list_sections(project_id, include_archived=include_archived)
    return [SectionResponse.from_domain(s) for s in sections]


@router.post("/sections", response_model=SectionResponse, status_code=201)
def create_section(
    request: Request,
    body: SectionCreate,
    principal: Principal = Depends(get_current_principal),
) -> SectionResponse:
    resolver: AccessResolver = request.app.state.access_resolver
    store: TodoStore = request.app.state.todo_store
    resolver.resolve_project(principal, body.project_id).require()
    section_id = store.create_section(Section(project_id=body.project_id, name=body.name))
    _invalidate_listings(request)
    return SectionResponse.from_domain(store.get_section(section_id))


@router.post("/sections/{section_id}/archive", response_model=SectionResponse)
def archive_section(
    request: Request,
    section_id: int,
    principal: Principal = Depends(get_current_principal),
) -> SectionResponse:
    """Hide the section; its completed tasks are archived with it."""
    resolver: AccessResolver = request.app.state.access_resolver
    store: TodoStore = request.app.state.todo_store
    resolver.resolve_section(principal, section_id).require()
    store.archive_section(section_id)
    _invalidate_listings(request)
    return SectionResponse.from_domain(store.get_section(section_id))


@router.post("/sections/{section_id}/unarchive", response_model=SectionResponse)
def unarchive_section(
    request: Request,
    section_id: int,
    principal: Principal = Depends(get_current_principal),
) -> SectionResponse:
    resolver: AccessResolver = request.app.state.access_resolver
    store: TodoStore = request.app.state.todo_store
    resolver.resolve_section(principal, section_id).require()
    store.unarchive_section(section_id)
    _invalidate_listings(request)
    return SectionResponse.from_domain(store.get_section(section_id))


@router.delete("/sections/{section_id}", response_model=SuccessResponse)
def delete_section(
    request: Request,
    section_id: int,
    principal: Principal = Depends(get_current_principal),
) -> SuccessResponse:
    resolver: AccessResolver = request.app.state.access_resolver
    store: TodoStore = request.app.state.todo_store
    resolver.resolve_section(principal, section_id).require()
    store.delete_section(section_id)
    _invalidate_listings(request)
    return SuccessResponse()


@router.get("/sections/{section_id}/tasks", response_model=list[TaskResponse])
def list_tasks(
    request: Request,
    section_id: int,
    principal: Principal = Depends(get_current_principal),
) -> list[TaskResponse]:
    resolver: AccessResolver = request.app.state.access_resolver
    store: TodoStore = request.app.state.todo_store
    resolver.resolve_section(principal, section_id).require()
    return [TaskResponse.from_domain(t) for t in store.list_tasks(section_id)]


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


@router.post("/tasks", response_model=TaskResponse, status_code=201)
def create_task(
    request: Request,
    body: TaskCreate,
    principal: Principal = Depends(get_current_principal),
) -> TaskResponse:
    resolver: AccessResolver = request.app.state.access_resolver
    store: TodoStore = request.app.state.todo_store
    resolver.resolve_section(principal, body.section_id).require()
    task_id = store.create_task(Task(section_id=body.section_id, title=body.title, description=body.description))
    _invalidate_listings(request)
    return TaskResponse.from_domain(store.get_task(task_id))


@router.get("/tasks/{task_id}", response_model=TaskResponse)
def get_task(
    request: Request,
    task_id: int,
    principal: Principal = Depends(get_current_principal),
) -> TaskResponse:
    resolver: AccessResolver = request.app.state.access_resolver
    store: TodoStore = request.app.state.todo_store
    resolver.resolve_task(principal, task_id).require()
    return TaskResponse.from_domain(store.get_task(task_id))


@router.put("/tasks/{task_id}", response_model=TaskResponse)
def update_task(
    request: Request,
    task_id: int,
    body: TaskUpdate,
    principal: Principal = Depends(get_current_principal),
) -> TaskResponse:
    """Partial update. description may be cleared with an explicit null; other fields may not."""
    resolver: AccessResolver = request.app.state.access_resolver
    store: TodoStore = request.app.state.todo_store
    resolver.resolve_task(principal, task_id).require()

    updates = {
        field: value
        for field, value in body.model_dump(exclude_unset=True).items()
        if value is not None or field == "description"
    }
    if not updates:
        raise HTTPException(
            status_code=400,
            detail={"code": "no_changes", "message": "No fields to update."},
        )
    store.update_task(task_id, **updates)
    _invalidate_listings(request)
    return TaskResponse.from_domain(store.get_task(task_id))


@router.delete("/tasks/{task_id}", response_model=SuccessResponse)
def delete_task(
    request: Request,
    task_id: int,
    principal: Principal = Depends(get_current_principal),
) -> SuccessResponse:
    resolver: AccessResolver = request.app.state.access_resolver
    store: TodoStore = request.app.state.todo_store
    resolver.resolve_task(principal, task_id).require()
    store.delete_task(task_id)
    _invalidate_listings(request)
    return SuccessResponse()
