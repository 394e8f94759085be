"""
todo/access.py -- AccessResolver: hierarchical project/section/task access control.

Every resource kind is authorised the same way: find the project that owns it,
then answer for that project.

  resource --(owning-project lookup)--> Project | None
    None                               -> NOT_FOUND
    project.user_id == principal       -> OWNER
    ProjectShare(project, principal)   -> SHARED_COLLABORATOR
    otherwise                          -> DENIED

Ownership is checked before the share lookup: it needs no extra query, and an
owner never touches the share table.

The resolver only answers "may this principal read/write this resource at
all". Owner-only operations (sharing, deleting a project) check
decision.is_owner in the route handler.

NOT_FOUND and DENIED stay distinct (404 vs 403). A caller who guesses an
existing project id learns that it exists; that is intentional.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from auth.models import Principal
from core.errors import AccessDenied, NotFound
from todo.models import Project
from todo.store import TodoStore

logger = logging.getLogger("tasktrack.todo.access")


class AccessLevel(str, Enum):
    OWNER = "owner"
    SHARED_COLLABORATOR = "shared_collaborator"
    DENIED = "denied"
    NOT_FOUND = "not_found"


class ResourceKind(str, Enum):
    PROJECT = "project"
    SECTION = "section"
    TASK = "task"


@dataclass(frozen=True)
class AccessDecision:
    """Outcome of one resolution. project is set only when access is granted."""

    level: AccessLevel
    kind: ResourceKind
    resource_id: int
    project: Optional[Project] = None

    @property
    def allowed(self) -> bool:
        return self.level in (AccessLevel.OWNER, AccessLevel.SHARED_COLLABORATOR)

    @property
    def is_owner(self) -> bool:
        return self.level is AccessLevel.OWNER

    def require(self) -> "AccessDecision":
        """Return self when access is granted; raise NotFound or AccessDenied otherwise."""
        if self.level is AccessLevel.NOT_FOUND:
            raise NotFound(f"{self.kind.value.capitalize()} not found.")
        if self.level is AccessLevel.DENIED:
            raise AccessDenied(f"Access denied to this {self.kind.value}.")
        return self

    def require_owner(self, action: str) -> "AccessDecision":
        """Like require(), but collaborators are refused too. action reads "share the project"."""
        self.require()
        if not self.is_owner:
            raise AccessDenied(f"Only the project owner can {action}.")
        return self


class AccessResolver:
    """Resolve (principal, resource) pairs against a TodoStore."""

    def __init__(self, store: TodoStore) -> None:
        self.store = store
        self._owning_project: dict[ResourceKind, Callable[[int], Optional[Project]]] = {
            ResourceKind.PROJECT: store.get_project,
            ResourceKind.SECTION: store.get_project_for_section,
            ResourceKind.TASK: store.get_project_for_task,
        }

    def resolve(self, principal: Principal, kind: ResourceKind, resource_id: int) -> AccessDecision:
        project = self._owning_project[kind](resource_id)
        if project is None:
            return AccessDecision(AccessLevel.NOT_FOUND, kind, resource_id)
        if project.user_id == principal.user_id:
            return AccessDecision(AccessLevel.OWNER, kind, resource_id, project)
        if self.store.get_share(project.id, principal.user_id) is not None:
            return AccessDecision(AccessLevel.SHARED_COLLABORATOR, kind, resource_id, project)
        logger.info(
            "Access denied: user_id=%d %s_id=%d (project_id=%d)",
            principal.user_id,
            kind.value,
            resource_id,
            project.id,
        )
        return AccessDecision(AccessLevel.DENIED, kind, resource_id)

    def resolve_project(self, principal: Principal, project_id: int) -> AccessDecision:
        return self.resolve(principal, ResourceKind.PROJECT, project_id)

    def resolve_section(self, principal: Principal, section_id: int) -> AccessDecision:
        return self.resolve(principal, ResourceKind.SECTION, section_id)

    def resolve_task(self, principal: Principal, task_id: int) -> AccessDecision:
        return self.resolve(principal, ResourceKind.TASK, task_id)
