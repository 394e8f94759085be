"""
todo/store.py -- SQLAlchemy-backed persistence for projects, sections, tasks and shares.

Uses SQLAlchemy Core (not ORM) so the dataclasses in todo/models.py remain the
authoritative domain representation. Swapping SQLite for PostgreSQL is a
connection string change, not a rewrite.

Pattern: Repository + Data Mapper. TodoStore is the repository; the _row_to_*
functions are the mappers. Route handlers and the access resolver never touch
SQL directly.

Ownership lookups:
  get_project_for_section() and get_project_for_task() join a child row up to
  its owning project in a single query. AccessResolver uses them so every
  resource kind is authorised against the same project row.

Cascades:
  Deleting a project removes its sections, their tasks, and its shares via
  ON DELETE CASCADE (foreign keys are switched on per SQLite connection).

Security: all queries use bound parameters. No f-strings in SQL.

Usage:
    store = TodoStore()                               # SQLite default
    store = TodoStore("postgresql://user:pw@host/db") # PostgreSQL
    project_id = store.create_project(Project(user_id=1, name="Inbox"))
    store.add_share(ProjectShare(project_id=project_id, user_id=2, shared_by_user_id=1))
    store.close()
"""

from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from sqlalchemy import (
    Column,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
    func,
    select,
)
from sqlalchemy.engine import Engine

from todo.models import Project, ProjectShare, Section, Task

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'tasktrack_todo.db'}"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_projects = Table(
    "projects",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False, index=True),  # owner; users live in the auth DB
    Column("name", String(255), nullable=False),
    Column("order_index", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
)

_sections = Table(
    "sections",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("project_id", Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("name", String(255), nullable=False),
    Column("order_index", Integer, nullable=False, server_default="0"),
    Column("archived", Integer, nullable=False, server_default="0"),  # boolean stored as 0/1
    Column("created_at", String(32), nullable=False),
)

_tasks = Table(
    "tasks",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("section_id", Integer, ForeignKey("sections.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("title", String(500), nullable=False),
    Column("description", Text),
    Column("order_index", Integer, nullable=False, server_default="0"),
    Column("completed", Integer, nullable=False, server_default="0"),
    Column("archived", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
)

_shares = Table(
    "project_shares",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("project_id", Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False),
    Column("user_id", Integer, nullable=False, index=True),
    Column("shared_by_user_id", Integer, nullable=False),
    Column("created_at", String(32), nullable=False),
    UniqueConstraint("project_id", "user_id", name="uq_project_share"),
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL and foreign keys on every new SQLite connection.

    SQLite PRAGMAs are per-connection, and foreign_keys defaults to OFF, which
    would silently disable the project -> section -> task cascade.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")
    dbapi_conn.execute("PRAGMA foreign_keys=ON")


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class TodoStore:
    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            # FastAPI runs sync handlers in a threadpool, so one connection may
            # be used from several threads over its lifetime.
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_sqlite_pragmas)
        metadata.create_all(self.engine)

    def ping(self) -> bool:
        with self.engine.connect() as conn:
            conn.execute(select(1))
        return True

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    def create_project(self, project: Project) -> int:
        """Insert a project at the end of its owner's ordering and return its ID."""
        with self.engine.connect() as conn:
            max_order = conn.execute(
                select(func.max(_projects.c.order_index)).where(_projects.c.user_id == project.user_id)
            ).scalar()
            result = conn.execute(
                _projects.insert().values(
                    user_id=project.user_id,
                    name=project.name,
                    order_index=(max_order or 0) + 1,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_project(self, project_id: int) -> Optional[Project]:
        """Fetch a single project by ID. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_projects.select().where(_projects.c.id == project_id)).fetchone()
        return _row_to_project(row) if row is not None else None

    def get_project_for_section(self, section_id: int) -> Optional[Project]:
        """Return the project owning section_id, or None if the section does not exist."""
        stmt = (
            select(_projects)
            .select_from(_sections.join(_projects, _sections.c.project_id == _projects.c.id))
            .where(_sections.c.id == section_id)
        )
        with self.engine.connect() as conn:
            row = conn.execute(stmt).fetchone()
        return _row_to_project(row) if row is not None else None

    def get_project_for_task(self, task_id: int) -> Optional[Project]:
        """Return the project owning task_id (task -> section -> project), or None."""
        stmt = (
            select(_projects)
            .select_from(
                _tasks.join(_sections, _tasks.c.section_id == _sections.c.id).join(
                    _projects, _sections.c.project_id == _projects.c.id
                )
            )
            .where(_tasks.c.id == task_id)
        )
        with self.engine.connect() as conn:
            row = conn.execute(stmt).fetchone()
        return _row_to_project(row) if row is not None else None

    def list_owned_projects(self, user_id: int) -> list[Project]:
        """Projects owned by user_id in the owner's chosen order."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _projects.select().where(_projects.c.user_id == user_id).order_by(_projects.c.order_index)
            ).fetchall()
        return [_row_to_project(r) for r in rows]

    def list_shared_projects(self, user_id: int) -> list[Project]:
        """Projects shared with user_id, ordered by name."""
        stmt = (
            select(_projects)
            .select_from(_shares.join(_projects, _shares.c.project_id == _projects.c.id))
            .where(_shares.c.user_id == user_id)
            .order_by(_projects.c.name)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [_row_to_project(r) for r in rows]

    def count_open_tasks(self, project_ids: list[int]) -> dict[int, int]:
        """Return {project_id: number of unarchived tasks in unarchived sections}.

        One GROUP BY query for the whole list instead of one query per project.
        """
        if not project_ids:
            return {}
        stmt = (
            select(_sections.c.project_id, func.count(_tasks.c.id))
            .select_from(
                _sections.outerjoin(_tasks, (_tasks.c.section_id == _sections.c.id) & (_tasks.c.archived == 0))
            )
            .where(_sections.c.project_id.in_(project_ids) & (_sections.c.archived == 0))
            .group_by(_sections.c.project_id)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return {row[0]: row[1] for row in rows}

    def update_project(self, project_id: int, **fields) -> bool:
        """Update mutable fields (name, order_index). Returns False if not found."""
        with self.engine.connect() as conn:
            result = conn.execute(_projects.update().where(_projects.c.id == project_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def delete_project(self, project_id: int) -> bool:
        """Delete a project; sections, tasks and shares go with it (cascade)."""
        with self.engine.connect() as conn:
            result = conn.execute(_projects.delete().where(_projects.c.id == project_id))
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Shares
    # ------------------------------------------------------------------

    def add_share(self, share: ProjectShare) -> int:
        """Grant collaborator access.

        Raises sqlalchemy.exc.IntegrityError if the project is already shared
        with that user -- the route layer turns this into 409.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _shares.insert().values(
                    project_id=share.project_id,
                    user_id=share.user_id,
                    shared_by_user_id=share.shared_by_user_id,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_share(self, project_id: int, user_id: int) -> Optional[ProjectShare]:
        with self.engine.connect() as conn:
            row = conn.execute(
                _shares.select().where((_shares.c.project_id == project_id) & (_shares.c.user_id == user_id))
            ).fetchone()
        return _row_to_share(row) if row is not None else None

    def list_shares(self, project_id: int) -> list[ProjectShare]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                _shares.select().where(_shares.c.project_id == project_id).order_by(_shares.c.created_at, _shares.c.id)
            ).fetchall()
        return [_row_to_share(r) for r in rows]

    def delete_share(self, project_id: int, user_id: int) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(
                _shares.delete().where((_shares.c.project_id == project_id) & (_shares.c.user_id == user_id))
            )
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Sections
    # ------------------------------------------------------------------

    def create_section(self, section: Section) -> int:
        with self.engine.connect() as conn:
            max_order = conn.execute(
                select(func.max(_sections.c.order_index)).where(_sections.c.project_id == section.project_id)
            ).scalar()
            result = conn.execute(
                _sections.insert().values(
                    project_id=section.project_id,
                    name=section.name,
                    order_index=(max_order or 0) + 1,
                    archived=0,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_section(self, section_id: int) -> Optional[Section]:
        with self.engine.connect() as conn:
            row = conn.execute(_sections.select().where(_sections.c.id == section_id)).fetchone()
        return _row_to_section(row) if row is not None else None

    def list_sections(self, project_id: int, include_archived: bool = False) -> list[Section]:
        query = _sections.select().where(_sections.c.project_id == project_id)
        if not include_archived:
            query = query.where(_sections.c.archived == 0)
        with self.engine.connect() as conn:
            rows = conn.execute(query.order_by(_sections.c.order_index)).fetchall()
        return [_row_to_section(r) for r in rows]

    def archive_section(self, section_id: int) -> bool:
        """Hide a section and archive its completed tasks. Open tasks keep their state.

        Returns False if the section does not exist.
        """
        with self.engine.connect() as conn:
            conn.execute(
                _tasks.update()
                .where((_tasks.c.section_id == section_id) & (_tasks.c.completed == 1))
                .values(archived=1)
            )
            result = conn.execute(_sections.update().where(_sections.c.id == section_id).values(archived=1))
            conn.commit()
        return result.rowcount > 0

    def unarchive_section(self, section_id: int) -> bool:
        """Restore a section at the end of its project's visible sections."""
        with self.engine.connect() as conn:
            project_id = conn.execute(
                select(_sections.c.project_id).where(_sections.c.id == section_id)
            ).scalar()
            if project_id is None:
                return False
            max_order = conn.execute(
                select(func.max(_sections.c.order_index)).where(
                    (_sections.c.project_id == project_id) & (_sections.c.archived == 0)
                )
            ).scalar()
            conn.execute(
                _sections.update()
                .where(_sections.c.id == section_id)
                .values(archived=0, order_index=(max_order or 0) + 1)
            )
            conn.commit()
        return True

    def delete_section(self, section_id: int) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(_sections.delete().where(_sections.c.id == section_id))
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def create_task(self, task: Task) -> int:
        with self.engine.connect() as conn:
            max_order = conn.execute(
                select(func.max(_tasks.c.order_index)).where(_tasks.c.section_id == task.section_id)
            ).scalar()
            result = conn.execute(
                _tasks.insert().values(
                    section_id=task.section_id,
                    title=task.title,
                    description=task.description,
                    order_index=(max_order or 0) + 1,
                    completed=1 if task.completed else 0,
                    archived=0,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_task(self, task_id: int) -> Optional[Task]:
        with self.engine.connect() as conn:
            row = conn.execute(_tasks.select().where(_tasks.c.id == task_id)).fetchone()
        return _row_to_task(row) if row is not None else None

    def list_tasks(self, section_id: int, include_archived: bool = False) -> list[Task]:
        query = _tasks.select().where(_tasks.c.section_id == section_id)
        if not include_archived:
            query = query.where(_tasks.c.archived == 0)
        with self.engine.connect() as conn:
            rows = conn.execute(query.order_by(_tasks.c.order_index)).fetchall()
        return [_row_to_task(r) for r in rows]

    def update_task(self, task_id: int, **fields) -> bool:
        """Update any subset of: title, description, completed, archived.

        Booleans are converted to 0/1 for SQLite. Returns False if not found.
        """
        for flag in ("completed", "archived"):
            if flag in fields:
                fields[flag] = 1 if fields[flag] else 0
        with self.engine.connect() as conn:
            result = conn.execute(_tasks.update().where(_tasks.c.id == task_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def delete_task(self, task_id: int) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(_tasks.delete().where(_tasks.c.id == task_id))
            conn.commit()
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_project(row) -> Project:
    return Project(
        id=row.id,
        user_id=row.user_id,
        name=row.name,
        order_index=row.order_index,
        created_at=row.created_at,
    )


def _row_to_section(row) -> Section:
    return Section(
        id=row.id,
        project_id=row.project_id,
        name=row.name,
        order_index=row.order_index,
        archived=bool(row.archived),
        created_at=row.created_at,
    )


def _row_to_task(row) -> Task:
    return Task(
        id=row.id,
        section_id=row.section_id,
        title=row.title,
        description=row.description,
        order_index=row.order_index,
        completed=bool(row.completed),
        archived=bool(row.archived),
        created_at=row.created_at,
    )


def _row_to_share(row) -> ProjectShare:
    return ProjectShare(
        id=row.id,
        project_id=row.project_id,
        user_id=row.user_id,
        shared_by_user_id=row.shared_by_user_id,
        created_at=row.created_at,
    )
