# tests/test_sprints.py — Sprint lifecycle tests
import pytest
from httpx import AsyncClient

import issue_lifecycle
import sprint_lifecycle
from errors import ValidationError
from models import SprintStatus
from schemas import IssueCreate, IssueUpdate, SprintCreate

from tests.conftest import as_actor, get_auth_headers


async def _sprint(client: AsyncClient, headers: dict, project_id: str, name: str) -> dict:
    res = await client.post("/api/v1/sprints", json={"project_id": project_id, "name": name}, headers=headers)
    assert res.status_code == 201
    return res.json()["data"]


@pytest.mark.asyncio
class TestStartSprint:
    async def test_create_is_planned(self, client: AsyncClient, db_session, developer, project):
        headers = await get_auth_headers(db_session, developer)
        sprint = await _sprint(client, headers, project.id, "Sprint 1")
        assert sprint["status"] == "planned"
        assert sprint["created_by"] == developer.id

    async def test_start_sets_start_date(self, client: AsyncClient, db_session, developer, project):
        headers = await get_auth_headers(db_session, developer)
        sprint = await _sprint(client, headers, project.id, "Sprint 1")
        res = await client.patch(f"/api/v1/sprints/{sprint['id']}/start", headers=headers)
        assert res.status_code == 200
        data = res.json()["data"]
        assert data["status"] == "active"
        assert data["start_date"] is not None

    async def test_only_one_active_sprint(self, client: AsyncClient, db_session, developer, project):
        headers = await get_auth_headers(db_session, developer)
        first = await _sprint(client, headers, project.id, "Sprint 1")
        second = await _sprint(client, headers, project.id, "Sprint 2")
        await client.patch(f"/api/v1/sprints/{first['id']}/start", headers=headers)

        res = await client.patch(f"/api/v1/sprints/{second['id']}/start", headers=headers)
        assert res.status_code == 400
        message = res.json()["message"]
        assert message["error_type"] == "Validation Error"
        assert message["error_message"] == sprint_lifecycle.ALREADY_ACTIVE

        sprints = (await client.get(f"/api/v1/sprints/project/{project.id}", headers=headers)).json()["data"]
        statuses = {s["id"]: s["status"] for s in sprints}
        assert statuses == {first["id"]: "active", second["id"]: "planned"}

    async def test_restarting_active_sprint_rejected(self, client: AsyncClient, db_session, developer, project):
        headers = await get_auth_headers(db_session, developer)
        sprint = await _sprint(client, headers, project.id, "Sprint 1")
        await client.patch(f"/api/v1/sprints/{sprint['id']}/start", headers=headers)
        res = await client.patch(f"/api/v1/sprints/{sprint['id']}/start", headers=headers)
        assert res.status_code == 400

    async def test_completed_sprint_cannot_restart(self, client: AsyncClient, db_session, developer, project):
        headers = await get_auth_headers(db_session, developer)
        sprint = await _sprint(client, headers, project.id, "Sprint 1")
        await client.patch(f"/api/v1/sprints/{sprint['id']}/start", headers=headers)
        await client.patch(f"/api/v1/sprints/{sprint['id']}/complete", headers=headers)

        res = await client.patch(f"/api/v1/sprints/{sprint['id']}/start", headers=headers)
        assert res.status_code == 400

    async def test_unique_index_backs_up_the_check(self, db_session, developer, project, monkeypatch):
        actor = as_actor(developer)
        first = await sprint_lifecycle.create_sprint(db_session, actor, SprintCreate(project_id=project.id, name="A"))
        second = await sprint_lifecycle.create_sprint(db_session, actor, SprintCreate(project_id=project.id, name="B"))
        await sprint_lifecycle.start_sprint(db_session, actor, first.id)

        async def no_active_sprint(db, project_id):
            return None

        # Simulate a concurrent start that slipped past the pre-check
        monkeypatch.setattr(sprint_lifecycle, "_active_sprint", no_active_sprint)
        with pytest.raises(ValidationError) as exc:
            await sprint_lifecycle.start_sprint(db_session, actor, second.id)
        assert exc.value.message == sprint_lifecycle.ALREADY_ACTIVE

        refreshed = await sprint_lifecycle.get_sprint(db_session, actor, second.id, refresh=True)
        assert refreshed.status == SprintStatus.PLANNED

    async def test_non_member_cannot_start(self, client: AsyncClient, db_session, developer, manager, project):
        sprint = await _sprint(client, await get_auth_headers(db_session, developer), project.id, "Sprint 1")
        res = await client.patch(
            f"/api/v1/sprints/{sprint['id']}/start", headers=await get_auth_headers(db_session, manager),
        )
        assert res.status_code == 403


@pytest.mark.asyncio
class TestCompleteSprint:
    async def _issues_in(self, db_session, developer, project, sprint_id):
        actor = as_actor(developer)
        open_issue = await issue_lifecycle.create_issue(
            db_session, actor, IssueCreate(project_id=project.id, title="Open", sprint_id=sprint_id),
        )
        closed_issue = await issue_lifecycle.create_issue(
            db_session, actor, IssueCreate(project_id=project.id, title="Closed", sprint_id=sprint_id),
        )
        await issue_lifecycle.update_issue(db_session, actor, closed_issue.id, IssueUpdate(status="closed"))
        return open_issue.id, closed_issue.id

    async def test_unfinished_issues_go_to_backlog(self, client: AsyncClient, db_session, developer, project):
        headers = await get_auth_headers(db_session, developer)
        sprint = await _sprint(client, headers, project.id, "Sprint 1")
        open_id, closed_id = await self._issues_in(db_session, developer, project, sprint["id"])
        await client.patch(f"/api/v1/sprints/{sprint['id']}/start", headers=headers)

        res = await client.patch(f"/api/v1/sprints/{sprint['id']}/complete", headers=headers)
        assert res.status_code == 200
        body = res.json()
        assert body["data"]["status"] == "completed"
        assert body["data"]["completed_at"] is not None
        assert body["message"]["details"]["moved_issues"] == 1
        assert body["message"]["details"]["moved_to"] == "backlog"

        open_issue = (await client.get(f"/api/v1/issues/{open_id}", headers=headers)).json()["data"]
        closed_issue = (await client.get(f"/api/v1/issues/{closed_id}", headers=headers)).json()["data"]
        assert open_issue["sprint_id"] is None
        assert closed_issue["sprint_id"] == sprint["id"]

    async def test_move_to_next_sprint_with_camel_case_key(self, client: AsyncClient, db_session, developer, project):
        headers = await get_auth_headers(db_session, developer)
        current = await _sprint(client, headers, project.id, "Sprint 1")
        nxt = await _sprint(client, headers, project.id, "Sprint 2")
        open_id, _ = await self._issues_in(db_session, developer, project, current["id"])

        res = await client.patch(
            f"/api/v1/sprints/{current['id']}/complete", json={"moveToSprintId": nxt["id"]}, headers=headers,
        )
        assert res.status_code == 200
        assert res.json()["message"]["details"]["moved_to"] == nxt["id"]

        issue = (await client.get(f"/api/v1/issues/{open_id}", headers=headers)).json()["data"]
        assert issue["sprint_id"] == nxt["id"]
        assert issue["history"] == []

    async def test_double_complete_rejected(self, client: AsyncClient, db_session, developer, project):
        headers = await get_auth_headers(db_session, developer)
        sprint = await _sprint(client, headers, project.id, "Sprint 1")
        assert (await client.patch(f"/api/v1/sprints/{sprint['id']}/complete", headers=headers)).status_code == 200
        res = await client.patch(f"/api/v1/sprints/{sprint['id']}/complete", headers=headers)
        assert res.status_code == 400

    async def test_destination_rules(self, client: AsyncClient, db_session, developer, project):
        headers = await get_auth_headers(db_session, developer)
        current = await _sprint(client, headers, project.id, "Sprint 1")
        done = await _sprint(client, headers, project.id, "Old")
        await client.patch(f"/api/v1/sprints/{done['id']}/complete", headers=headers)

        other_project = (await client.post("/api/v1/projects", json={
            "name": "Other", "key": "OTH", "project_lead": developer.id,
        }, headers=headers)).json()["data"]
        foreign = await _sprint(client, headers, other_project["id"], "Elsewhere")

        url = f"/api/v1/sprints/{current['id']}/complete"
        assert (await client.patch(url, json={"move_to_sprint_id": current["id"]}, headers=headers)).status_code == 400
        assert (await client.patch(url, json={"move_to_sprint_id": done["id"]}, headers=headers)).status_code == 400
        assert (await client.patch(url, json={"move_to_sprint_id": foreign["id"]}, headers=headers)).status_code == 404
        assert (await client.patch(url, json={"move_to_sprint_id": "missing"}, headers=headers)).status_code == 404

        sprints = (await client.get(f"/api/v1/sprints/project/{project.id}", headers=headers)).json()["data"]
        assert {s["id"]: s["status"] for s in sprints}[current["id"]] == "planned"


@pytest.mark.asyncio
class TestListSprints:
    async def test_newest_first(self, client: AsyncClient, db_session, developer, project):
        headers = await get_auth_headers(db_session, developer)
        for name in ("Sprint 1", "Sprint 2", "Sprint 3"):
            await _sprint(client, headers, project.id, name)
        res = await client.get(f"/api/v1/sprints/project/{project.id}", headers=headers)
        assert [s["name"] for s in res.json()["data"]] == ["Sprint 3", "Sprint 2", "Sprint 1"]

    async def test_other_company_sees_not_found(self, client: AsyncClient, db_session, outsider, project):
        res = await client.get(
            f"/api/v1/sprints/project/{project.id}", headers=await get_auth_headers(db_session, outsider),
        )
        assert res.status_code == 404
