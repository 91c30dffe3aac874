"""
Tests for FastAPI endpoints in main.py.
The LLM is scripted through the fake_llm fixture.
"""
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import main
from database import create_task_db, get_tasks_db
from models import TaskCreate

USER = {"X-User-Id": "user-1"}


class TestParseTaskEndpoint:
    """Tests for POST /parse-task."""

    def test_parse_first_input(self, app_client, fake_llm):
        """POST /parse-task extracts a complete task."""
        fake_llm.reply({"title": "会議", "category": "work", "scheduledTime": "15:00"})

        response = app_client.post("/parse-task", json={"input": "15時から会議"})
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["data"]["taskInfo"]["title"] == "会議"
        assert body["data"]["isComplete"] is True
        assert "warning" not in body

    def test_parse_continuation_chip(self, app_client, fake_llm):
        """A chip answer is resolved without the model."""
        response = app_client.post("/parse-task", json={
            "input": "買い物",
            "previousContext": "牛乳",
            "currentTaskInfo": {"title": "牛乳"},
            "currentField": "category",
        })
        assert response.status_code == 200
        assert response.json()["data"]["taskInfo"]["category"] == "shopping"
        assert fake_llm.calls == 0

    def test_parse_fallback_has_warning(self, app_client, fake_llm):
        """A model failure returns the fallback with a warning."""
        fake_llm.fail(TimeoutError("timed out"))

        response = app_client.post("/parse-task", json={"input": "牛乳を買う"})
        assert response.status_code == 200
        body = response.json()
        assert body["data"]["taskInfo"]["category"] == "personal"
        assert body["warning"]["code"] == "LLM_API_ERROR"

    def test_blank_input(self, app_client):
        """Blank input is rejected with INVALID_INPUT."""
        response = app_client.post("/parse-task", json={"input": "  "})
        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["error"]["code"] == "INVALID_INPUT"
        assert body["error"]["userMessage"] == "入力内容を確認してください"

    def test_malformed_body(self, app_client):
        """A body that fails validation maps to INVALID_INPUT."""
        response = app_client.post("/parse-task", json={"input": ["not", "text"]})
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_INPUT"


class TestConversationEndpoints:
    """Tests for /conversations."""

    def start(self, app_client):
        response = app_client.post("/conversations", headers=USER)
        assert response.status_code == 200
        return response.json()["data"]["sessionId"]

    def test_start_conversation(self, app_client):
        """POST /conversations returns a collecting session."""
        response = app_client.post("/conversations", headers=USER)
        data = response.json()["data"]
        assert data["sessionId"]
        assert data["state"]["phase"] == "collecting"

    def test_requires_user_header(self, app_client):
        """Requests without X-User-Id are unauthorized."""
        response = app_client.post("/conversations")
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "UNAUTHORIZED"

    def test_full_dialog(self, test_db, app_client, fake_llm):
        """Title, category chip, confirm: the task is stored."""
        session_id = self.start(app_client)
        fake_llm.reply({"title": "タスク", "category": None})

        response = app_client.post(f"/conversations/{session_id}/messages", json={"content": "タスク"}, headers=USER)
        data = response.json()["data"]
        assert data["state"]["phase"] == "collecting"
        assert data["state"]["currentField"] == "category"
        assert data["messages"][-1]["type"] == "question"

        response = app_client.post(f"/conversations/{session_id}/messages", json={"content": "仕事"}, headers=USER)
        assert response.json()["data"]["state"]["phase"] == "confirming"

        response = app_client.post(f"/conversations/{session_id}/messages", json={"content": "登録する"}, headers=USER)
        data = response.json()["data"]
        assert data["state"]["phase"] == "completed"
        assert data["task"]["title"] == "タスク"
        assert data["task"]["category"] == "work"
        assert len(get_tasks_db("user-1")) == 1

    def test_get_conversation(self, app_client):
        """GET /conversations/{id} returns the session."""
        session_id = self.start(app_client)
        response = app_client.get(f"/conversations/{session_id}", headers=USER)
        assert response.status_code == 200
        assert response.json()["data"]["sessionId"] == session_id

    def test_other_user_forbidden(self, app_client):
        """Another user's session is forbidden."""
        session_id = self.start(app_client)
        response = app_client.get(f"/conversations/{session_id}", headers={"X-User-Id": "user-2"})
        assert response.status_code == 403

    def test_unknown_session(self, app_client):
        """Unknown session ids are rejected."""
        response = app_client.post("/conversations/missing/messages", json={"content": "会議"}, headers=USER)
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_INPUT"

    def test_delete_conversation(self, app_client):
        """A deleted session can no longer be read."""
        session_id = self.start(app_client)
        response = app_client.delete(f"/conversations/{session_id}", headers=USER)
        assert response.status_code == 200

        response = app_client.get(f"/conversations/{session_id}", headers=USER)
        assert response.status_code == 400

    def test_delete_resets_session(self, app_client, fake_llm):
        """Deleting resets the session so a turn still in flight drops its result."""
        session_id = self.start(app_client)
        fake_llm.reply({"title": "タスク", "category": None})
        app_client.post(f"/conversations/{session_id}/messages", json={"content": "タスク"}, headers=USER)
        session = main.sessions.get(session_id, "user-1")

        app_client.delete(f"/conversations/{session_id}", headers=USER)
        assert session.state.phase == "initial"
        assert session.state.current_task_info.title is None
        assert len(main.sessions) == 0


class TestTaskEndpoints:
    """Tests for /tasks endpoints."""

    def test_get_tasks_empty(self, app_client):
        """GET /tasks returns empty list when no tasks."""
        response = app_client.get("/tasks", headers=USER)
        assert response.status_code == 200
        assert response.json() == {"success": True, "data": []}

    def test_get_tasks_with_status(self, test_db, app_client):
        """GET /tasks filters by status."""
        create_task_db("user-1", TaskCreate(title="受信箱"))
        done = create_task_db("user-1", TaskCreate(title="完了"))
        app_client.patch(f"/tasks/{done.id}/status", json={"status": "done"}, headers=USER)

        response = app_client.get("/tasks", params={"status": "done"}, headers=USER)
        titles = [t["title"] for t in response.json()["data"]]
        assert titles == ["完了"]

    def test_update_status(self, test_db, app_client):
        """PATCH /tasks/{id}/status marks a task done."""
        task = create_task_db("user-1", TaskCreate(title="返信する", category="reply"))

        response = app_client.patch(f"/tasks/{task.id}/status", json={"status": "done"}, headers=USER)
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["status"] == "done"
        assert data["completedAt"] is not None

    def test_schedule(self, test_db, app_client):
        """PATCH /tasks/{id}/schedule schedules a task."""
        task = create_task_db("user-1", TaskCreate(title="掃除"))

        response = app_client.patch(
            f"/tasks/{task.id}/schedule",
            json={"scheduledAt": "2026-10-21T09:00:00+09:00"},
            headers=USER,
        )
        assert response.status_code == 200
        assert response.json()["data"]["status"] == "scheduled"

    def test_update_not_found(self, app_client):
        """Updating a missing task returns 404."""
        response = app_client.patch("/tasks/nonexistent/status", json={"status": "done"}, headers=USER)
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "TASK_NOT_FOUND"

    def test_update_other_users_task(self, test_db, app_client):
        """Updating another user's task returns 403."""
        task = create_task_db("user-2", TaskCreate(title="他人のタスク"))
        response = app_client.patch(f"/tasks/{task.id}/status", json={"status": "done"}, headers=USER)
        assert response.status_code == 403

    def test_invalid_status_value(self, test_db, app_client):
        """Unknown statuses return 400."""
        task = create_task_db("user-1", TaskCreate(title="返信する"))
        response = app_client.patch(f"/tasks/{task.id}/status", json={"status": "deleted"}, headers=USER)
        assert response.status_code == 400
