"""Unit tests for todo/store.py -- TodoStore.

Covers:
- ownership joins: get_project_for_section() / get_project_for_task()
- owned vs shared listings and open-task counts
- duplicate share -> IntegrityError
- project delete cascades to sections, tasks and shares
- partial task updates
- section archive / unarchive
"""

import pytest
from sqlalchemy.exc import IntegrityError

from todo.models import Project, ProjectShare, Section, Task
from todo.store import TodoStore


@pytest.fixture
def seeded(todo_store: TodoStore) -> dict[str, int]:
    p1 = todo_store.create_project(Project(user_id=1, name="Home"))
    p2 = todo_store.create_project(Project(user_id=1, name="Work"))
    s1 = todo_store.create_section(Section(project_id=p1, name="Today"))
    t1 = todo_store.create_task(Task(section_id=s1, title="Groceries"))
    t2 = todo_store.create_task(Task(section_id=s1, title="Laundry"))
    return {"p1": p1, "p2": p2, "s1": s1, "t1": t1, "t2": t2}


class TestOwnershipJoins:
    def test_section_and_task_resolve_to_project(self, todo_store: TodoStore, seeded: dict[str, int]) -> None:
        assert todo_store.get_project_for_section(seeded["s1"]).id == seeded["p1"]
        assert todo_store.get_project_for_task(seeded["t2"]).id == seeded["p1"]

    def test_unknown_children(self, todo_store: TodoStore, seeded: dict[str, int]) -> None:
        assert todo_store.get_project_for_section(999) is None
        assert todo_store.get_project_for_task(999) is None


class TestListings:
    def test_owned_projects_in_order(self, todo_store: TodoStore, seeded: dict[str, int]) -> None:
        owned = todo_store.list_owned_projects(1)
        assert [p.name for p in owned] == ["Home", "Work"]
        assert owned[0].order_index < owned[1].order_index

    def test_shared_projects(self, todo_store: TodoStore, seeded: dict[str, int]) -> None:
        todo_store.add_share(ProjectShare(project_id=seeded["p2"], user_id=2, shared_by_user_id=1))
        assert [p.id for p in todo_store.list_shared_projects(2)] == [seeded["p2"]]
        assert todo_store.list_owned_projects(2) == []

    def test_open_task_counts(self, todo_store: TodoStore, seeded: dict[str, int]) -> None:
        todo_store.update_task(seeded["t2"], archived=True)
        counts = todo_store.count_open_tasks([seeded["p1"], seeded["p2"]])
        assert counts.get(seeded["p1"]) == 1, "archived tasks are not counted"
        assert counts.get(seeded["p2"], 0) == 0
        assert todo_store.count_open_tasks([]) == {}


class TestShares:
    def test_duplicate_share_raises(self, todo_store: TodoStore, seeded: dict[str, int]) -> None:
        share = ProjectShare(project_id=seeded["p1"], user_id=2, shared_by_user_id=1)
        todo_store.add_share(share)
        with pytest.raises(IntegrityError):
            todo_store.add_share(share)

    def test_delete_share(self, todo_store: TodoStore, seeded: dict[str, int]) -> None:
        todo_store.add_share(ProjectShare(project_id=seeded["p1"], user_id=2, shared_by_user_id=1))
        assert todo_store.delete_share(seeded["p1"], 2) is True
        assert todo_store.get_share(seeded["p1"], 2) is None
        assert todo_store.delete_share(seeded["p1"], 2) is False


class TestCascade:
    def test_delete_project_removes_children(self, todo_store: TodoStore, seeded: dict[str, int]) -> None:
        todo_store.add_share(ProjectShare(project_id=seeded["p1"], user_id=2, shared_by_user_id=1))
        assert todo_store.delete_project(seeded["p1"]) is True
        assert todo_store.get_section(seeded["s1"]) is None
        assert todo_store.get_task(seeded["t1"]) is None
        assert todo_store.list_shares(seeded["p1"]) == []


class TestTasks:
    def test_partial_update(self, todo_store: TodoStore, seeded: dict[str, int]) -> None:
        assert todo_store.update_task(seeded["t1"], completed=True) is True
        task = todo_store.get_task(seeded["t1"])
        assert task.completed is True
        assert task.title == "Groceries"

    def test_archived_hidden_by_default(self, todo_store: TodoStore, seeded: dict[str, int]) -> None:
        todo_store.update_task(seeded["t1"], archived=True)
        assert [t.id for t in todo_store.list_tasks(seeded["s1"])] == [seeded["t2"]]
        assert len(todo_store.list_tasks(seeded["s1"], include_archived=True)) == 2


class TestSectionArchive:
    def test_archive_hides_section_and_completed_tasks(self, todo_store: TodoStore, seeded: dict[str, int]) -> None:
        todo_store.update_task(seeded["t1"], completed=True)
        assert todo_store.archive_section(seeded["s1"]) is True

        assert todo_store.list_sections(seeded["p1"]) == []
        assert [s.id for s in todo_store.list_sections(seeded["p1"], include_archived=True)] == [seeded["s1"]]
        assert todo_store.get_task(seeded["t1"]).archived is True
        assert todo_store.get_task(seeded["t2"]).archived is False
        assert todo_store.count_open_tasks([seeded["p1"]]).get(seeded["p1"], 0) == 0

    def test_unarchive_goes_to_the_end(self, todo_store: TodoStore, seeded: dict[str, int]) -> None:
        todo_store.archive_section(seeded["s1"])
        s2 = todo_store.create_section(Section(project_id=seeded["p1"], name="Later"))
        assert todo_store.unarchive_section(seeded["s1"]) is True
        assert [s.id for s in todo_store.list_sections(seeded["p1"])] == [s2, seeded["s1"]]

    def test_unknown_section(self, todo_store: TodoStore) -> None:
        assert todo_store.archive_section(999) is False
        assert todo_store.unarchive_section(999) is False
