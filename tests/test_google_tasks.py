"""Tests for GoogleTasksClient using httpx.MockTransport."""

import json
from urllib.parse import parse_qs

import httpx
import pytest

from tasks_sync.credentials import Credentials, SecretsProvider
from tasks_sync.exceptions import RemoteServiceError, SecretsUnavailableError
from tasks_sync.google_tasks import GoogleTasksClient

API = "https://tasks.test/tasks/v1"
TOKEN_URL = "https://oauth.test/token"


class FakeGoogle:
    """Records requests and answers them from a route table."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.routes: dict[tuple[str, str], list] = {}
        self.tokens = iter(f"tok-{n}" for n in range(1, 100))

    def on(self, method: str, path: str, *responses):
        self.routes[(method, path)] = list(responses)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if str(request.url) == TOKEN_URL:
            return httpx.Response(200, json={"access_token": next(self.tokens), "expires_in": 3599})

        path = request.url.path.removeprefix("/tasks/v1")
        queue = self.routes.get((request.method, path))
        if not queue:
            return httpx.Response(404, json={"error": {"code": 404}})
        response = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(response, httpx.Response):
            return response
        return httpx.Response(200, json=response)

    def api_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if str(r.url) != TOKEN_URL]

    def token_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if str(r.url) == TOKEN_URL]


@pytest.fixture
def google() -> FakeGoogle:
    return FakeGoogle()


@pytest.fixture
def client(google):
    secrets = SecretsProvider.from_credentials(Credentials("cid", "csecret", "rtoken"))
    with GoogleTasksClient(
        secrets,
        api_base=API,
        token_url=TOKEN_URL,
        transport=httpx.MockTransport(google),
    ) as client:
        yield client


class TestAuth:
    def test_refresh_token_grant(self, client, google):
        google.on("GET", "/users/@me/lists", {"items": []})

        client.list_task_lists()
        client.list_task_lists()

        [token_request] = google.token_requests()
        form = parse_qs(token_request.content.decode())
        assert form["grant_type"] == ["refresh_token"]
        assert form["refresh_token"] == ["rtoken"]
        assert form["client_id"] == ["cid"]
        assert all(r.headers["authorization"] == "Bearer tok-1" for r in google.api_requests())

    def test_401_refreshes_once_and_retries(self, client, google):
        google.on(
            "GET", "/users/@me/lists",
            httpx.Response(401),
            {"items": [{"id": "L1", "title": "Work"}]},
        )

        lists = client.list_task_lists()

        assert [(l.id, l.title) for l in lists] == [("L1", "Work")]
        assert len(google.token_requests()) == 2
        assert google.api_requests()[-1].headers["authorization"] == "Bearer tok-2"

    def test_failed_token_refresh(self, google):
        def handler(request):
            return httpx.Response(400, json={"error": "invalid_grant"})

        secrets = SecretsProvider.from_credentials(Credentials("cid", "csecret", "rtoken"))
        client = GoogleTasksClient(secrets, api_base=API, token_url=TOKEN_URL,
                                   transport=httpx.MockTransport(handler))

        with pytest.raises(RemoteServiceError) as exc_info:
            client.list_task_lists()
        assert exc_info.value.status_code == 400

    def test_missing_credentials(self):
        client = GoogleTasksClient(SecretsProvider(env={}), api_base=API, token_url=TOKEN_URL,
                                   transport=httpx.MockTransport(lambda r: httpx.Response(200)))

        with pytest.raises(SecretsUnavailableError) as exc_info:
            client.check_credentials()
        assert set(exc_info.value.missing) == {
            "GOOGLE_CLIENT_ID", "GOOGLE_CLIENT_SECRET", "GOOGLE_REFRESH_TOKEN",
        }


class TestLists:
    def test_pagination(self, client, google):
        google.on(
            "GET", "/users/@me/lists",
            {"items": [{"id": "L1", "title": "Work"}], "nextPageToken": "p2"},
            {"items": [{"id": "L2", "title": "Home"}]},
        )

        lists = client.list_task_lists()

        assert [l.id for l in lists] == ["L1", "L2"]
        assert google.api_requests()[1].url.params["pageToken"] == "p2"

    def test_find_or_create_reuses_exact_match(self, client, google):
        google.on("GET", "/users/@me/lists", {"items": [
            {"id": "L1", "title": "work"},
            {"id": "L2", "title": "Work"},
        ]})

        assert client.find_or_create_task_list("Work") == "L2"
        assert client.find_or_create_task_list("Work") == "L2"
        assert len(google.api_requests()) == 1

    def test_find_or_create_creates_missing_list(self, client, google):
        google.on("GET", "/users/@me/lists", {"items": []})
        google.on("POST", "/users/@me/lists", {"id": "NEW", "title": "Groceries"})

        assert client.find_or_create_task_list("Groceries") == "NEW"
        post = google.api_requests()[-1]
        assert json.loads(post.content) == {"title": "Groceries"}


class TestTasks:
    def test_list_tasks_includes_hidden_and_deleted(self, client, google):
        google.on("GET", "/lists/L1/tasks", {"items": [
            {"id": "T1", "title": "Report", "status": "completed", "completed": "2024-05-01T10:00:00.000Z"},
            {"id": "T2", "title": "Old", "deleted": True},
        ]})

        tasks = client.list_tasks("L1", include_deleted=True)

        params = google.api_requests()[0].url.params
        assert params["showHidden"] == "true"
        assert params["showDeleted"] == "true"
        assert params["showCompleted"] == "true"
        assert tasks[0].completed is True
        assert tasks[0].completed_at.year == 2024
        assert tasks[1].deleted is True
        assert all(t.list_id == "L1" for t in tasks)

    def test_get_missing_task(self, client):
        assert client.get_task("L1", "missing") is None
        assert client.task_exists("L1", "missing") is False

    def test_create_task(self, client, google):
        google.on("POST", "/lists/L1/tasks", {"id": "T9"})

        task_id = client.create_task("L1", "Buy milk", notes="2 cartons")

        assert task_id == "T9"
        assert json.loads(google.api_requests()[0].content) == {
            "title": "Buy milk",
            "status": "needsAction",
            "notes": "2 cartons",
        }

    def test_uncomplete_clears_completion_date(self, client, google):
        google.on("PATCH", "/lists/L1/tasks/T1", {"id": "T1", "status": "needsAction"})

        task = client.update_task("L1", "T1", completed=False)

        assert json.loads(google.api_requests()[0].content) == {"status": "needsAction", "completed": None}
        assert task.completed is False

    def test_complete_sends_only_status(self, client, google):
        google.on("PATCH", "/lists/L1/tasks/T1", {"id": "T1", "status": "completed"})

        client.update_task("L1", "T1", completed=True)

        assert json.loads(google.api_requests()[0].content) == {"status": "completed"}

    def test_server_error(self, client, google):
        google.on("PATCH", "/lists/L1/tasks/T1", httpx.Response(500, text="backend error"))

        with pytest.raises(RemoteServiceError) as exc_info:
            client.update_task("L1", "T1", title="x")
        assert exc_info.value.status_code == 500
