# tests/test_tasks.py — Task registry and router tests
import logging

import pytest
from httpx import AsyncClient
from sqlalchemy import select

from auth import SessionStore
from errors import Forbidden
from models import Task, TaskExecution, TaskStatus, ExecutionStatus
from task_registry import TaskRegistry, resolve_read_policy
from tests.conftest import create_task, login


@pytest.mark.asyncio
class TestCreateTask:
    async def test_admin_creates_pending_task(self, client: AsyncClient, admin_user, collaborator):
        await login(client, admin_user)
        res = await create_task(client, collaborator)
        assert res.status_code == 201
        data = res.json()["data"]
        assert data["status"] == "pending"
        assert data["user_id"] == collaborator.id
        assert data["user_name"] == "Carla Collab"
        assert data["user_email"] == "carla@example.com"
        assert data["task_type"] == "review"

    async def test_collaborator_cannot_create(self, client: AsyncClient, collaborator):
        await login(client, collaborator)
        res = await create_task(client, collaborator)
        assert res.status_code == 403

    async def test_requires_session(self, client: AsyncClient, collaborator):
        res = await create_task(client, collaborator)
        assert res.status_code == 401

    async def test_assignee_must_be_collaborator(self, client: AsyncClient, admin_user):
        await login(client, admin_user)
        res = await create_task(client, admin_user)
        assert res.status_code == 400
        assert res.json()["code"] == "TP-TASK-001"

    async def test_non_collaborator_rejected_even_with_invalid_fields(self, client: AsyncClient, admin_user):
        await login(client, admin_user)
        res = await create_task(client, admin_user, task_type="x", description="short")
        assert res.status_code == 400
        assert res.json()["code"] == "TP-TASK-001"

    async def test_unknown_assignee(self, client: AsyncClient, admin_user):
        await login(client, admin_user)
        res = await client.post("/tasks/", data={
            "user_id": "9999",
            "task_type": "review",
            "description": "please review the attached contract",
        })
        assert res.status_code == 404
        assert res.json()["message"] == "User not found"

    async def test_missing_user_id(self, client: AsyncClient, admin_user):
        await login(client, admin_user)
        res = await client.post("/tasks/", data={
            "task_type": "review",
            "description": "please review the attached contract",
        })
        assert res.status_code == 400

    async def test_short_task_type(self, client: AsyncClient, admin_user, collaborator):
        await login(client, admin_user)
        res = await create_task(client, collaborator, task_type="ab")
        assert res.status_code == 400
        assert "Task type" in res.json()["message"]

    async def test_short_description(self, client: AsyncClient, admin_user, collaborator):
        await login(client, admin_user)
        res = await create_task(client, collaborator, description="too short")
        assert res.status_code == 400
        assert "Description" in res.json()["message"]


@pytest.mark.asyncio
class TestTaskQueries:
    async def test_list_tasks_newest_first(self, client: AsyncClient, admin_user, collaborator):
        await login(client, admin_user)
        first = (await create_task(client, collaborator, task_type="first")).json()["data"]
        second = (await create_task(client, collaborator, task_type="second")).json()["data"]

        res = await client.get("/tasks/")
        assert res.status_code == 200
        ids = [t["id"] for t in res.json()["data"]]
        assert ids == [second["id"], first["id"]]
        assert res.json()["data"][0]["execution_id"] is None

    async def test_list_tasks_admin_only(self, client: AsyncClient, collaborator):
        await login(client, collaborator)
        res = await client.get("/tasks/")
        assert res.status_code == 403

    async def test_show_task(self, client: AsyncClient, admin_user, collaborator):
        await login(client, admin_user)
        task = (await create_task(client, collaborator)).json()["data"]

        await login(client, collaborator)
        res = await client.get(f"/tasks/show/{task['id']}")
        assert res.status_code == 200
        assert res.json()["data"]["user_email"] == "carla@example.com"

    async def test_show_task_not_found(self, client: AsyncClient, admin_user):
        await login(client, admin_user)
        res = await client.get("/tasks/show/424242")
        assert res.status_code == 404
        assert res.json()["message"] == "Task not found"

    async def test_open_read_policy_allows_any_collaborator(
        self, client: AsyncClient, admin_user, collaborator, other_collaborator,
    ):
        await login(client, admin_user)
        task = (await create_task(client, collaborator)).json()["data"]

        await login(client, other_collaborator)
        res = await client.get(f"/tasks/show/{task['id']}")
        assert res.status_code == 200

    async def test_collaborators_ordered_by_name(
        self, client: AsyncClient, admin_user, collaborator, other_collaborator,
    ):
        await login(client, admin_user)
        res = await client.get("/tasks/collaborators")
        assert res.status_code == 200
        names = [u["name"] for u in res.json()["data"]]
        assert names == ["Bruno Collab", "Carla Collab"]

    async def test_my_tasks_only_own_open_tasks(
        self, client: AsyncClient, db_session, admin_user, collaborator, other_collaborator,
    ):
        await login(client, admin_user)
        mine = (await create_task(client, collaborator)).json()["data"]
        done = (await create_task(client, collaborator, task_type="archive")).json()["data"]
        await create_task(client, other_collaborator)

        await TaskRegistry.update_task_status(done["id"], TaskStatus.COMPLETED, db_session)
        await db_session.commit()

        await login(client, collaborator)
        res = await client.get("/tasks/my-tasks")
        assert res.status_code == 200
        assert [t["id"] for t in res.json()["data"]] == [mine["id"]]

    async def test_my_tasks_collaborator_only(self, client: AsyncClient, admin_user):
        await login(client, admin_user)
        res = await client.get("/tasks/my-tasks")
        assert res.status_code == 403

    async def test_list_includes_presigned_execution_url(
        self, client: AsyncClient, db_session, admin_user, collaborator,
    ):
        await login(client, admin_user)
        task = (await create_task(client, collaborator)).json()["data"]
        db_session.add(TaskExecution(
            task_id=task["id"],
            collaborator_id=collaborator.id,
            description="finished the review",
            file_path="task-executions/abc_report.pdf",
            file_name="report.pdf",
            status=ExecutionStatus.SUBMITTED,
        ))
        await db_session.commit()

        res = await client.get("/tasks/")
        row = res.json()["data"][0]
        assert row["execution_file_name"] == "report.pdf"
        assert row["execution_file_url"].startswith(
            "http://public.test/task-files/task-executions/abc_report.pdf"
        )


@pytest.mark.asyncio
class TestTaskRegistry:
    async def test_assignee_read_policy_forbids_other_collaborator(
        self, db_session, admin_user, collaborator, other_collaborator,
    ):
        store = SessionStore()
        admin = store.get(store.create(admin_user))
        outsider = store.get(store.create(other_collaborator))

        task = await TaskRegistry.create_task(
            admin, collaborator.id, "review", "please review the attached contract", db_session,
        )
        with pytest.raises(Forbidden):
            await TaskRegistry.get_task(outsider, task["id"], db_session, policy="assignee")

    async def test_update_task_status_reports_missing_task(self, db_session):
        assert await TaskRegistry.update_task_status(12345, TaskStatus.IN_PROGRESS, db_session) is False

    async def test_update_task_status_moves_task(self, db_session, admin_user, collaborator):
        task = Task(user_id=collaborator.id, task_type="review", description="please review this")
        db_session.add(task)
        await db_session.commit()

        assert await TaskRegistry.update_task_status(task.id, TaskStatus.IN_PROGRESS, db_session)
        await db_session.commit()

        result = await db_session.execute(select(Task.status).where(Task.id == task.id))
        assert result.scalar_one() == TaskStatus.IN_PROGRESS

    async def test_unknown_policy_name_restricts_reads(
        self, db_session, admin_user, collaborator, other_collaborator,
    ):
        store = SessionStore()
        admin = store.get(store.create(admin_user))
        outsider = store.get(store.create(other_collaborator))

        task = await TaskRegistry.create_task(
            admin, collaborator.id, "review", "please review the attached contract", db_session,
        )
        with pytest.raises(Forbidden):
            await TaskRegistry.get_task(outsider, task["id"], db_session, policy="owner")


class TestReadPolicy:
    @pytest.mark.parametrize("value, expected", [
        (None, "open"),
        ("", "open"),
        ("open", "open"),
        ("  Open ", "open"),
        ("assignee", "assignee"),
        ("assignee ", "assignee"),
        ("ASSIGNEE", "assignee"),
    ])
    def test_known_names_are_normalised(self, value, expected):
        assert resolve_read_policy(value) == expected

    def test_unknown_name_falls_back_to_assignee_with_warning(self, caplog):
        with caplog.at_level(logging.WARNING, logger="task-portal.tasks"):
            assert resolve_read_policy("owner") == "assignee"
        assert any("TASK_READ_POLICY" in record.getMessage() for record in caplog.records)
