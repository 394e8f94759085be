"""
todo/models.py -- Domain dataclasses for projects, sections, tasks and shares.

These are pure data containers with zero logic. Persistence lives in
todo/store.py and access decisions in todo/access.py.

Ownership chain: Task -> Section -> Project -> user_id. Only Project carries
an owner; everything below inherits access from its project.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass
class Project:
    """A top-level container owned by exactly one user.

    id is None before the record is written to the database.
    """

    user_id: int
    name: str
    order_index: int = 0
    id: Optional[int] = None
    created_at: str = ""  # ISO 8601, set by store on insert


@dataclass
class Section:
    project_id: int
    name: str
    order_index: int = 0
    archived: bool = False
    id: Optional[int] = None
    created_at: str = ""


@dataclass
class Task:
    section_id: int
    title: str
    description: Optional[str] = None
    completed: bool = False
    archived: bool = False
    order_index: int = 0
    id: Optional[int] = None
    created_at: str = ""


@dataclass
class ProjectShare:
    """Grants user_id collaborator (non-owner) access to project_id.

    Created and removed by the project owner; removed automatically when the
    project is deleted.
    """

    project_id: int
    user_id: int
    shared_by_user_id: int
    id: Optional[int] = None
    created_at: str = ""
