"""
Google Tasks Interface

Thin REST client for the Google Tasks v1 API. Lists and tasks are always
addressed by an explicit (list_id, task_id) pair; the client never infers
which list a task belongs to.

Access tokens come from the OAuth refresh-token grant and are refreshed once
when the API answers 401.
"""

import logging
import threading
from datetime import datetime
from typing import Any, Optional

import httpx

from .credentials import SecretsProvider
from .exceptions import RemoteServiceError
from .models import (
    RemoteItem,
    RemoteList,
    STATUS_COMPLETED,
    STATUS_NEEDS_ACTION,
    format_rfc3339,
)
from . import config

logger = logging.getLogger(__name__)

PAGE_SIZE = 100


class GoogleTasksClient:
    """
    Interface to Google Tasks.

    find_or_create_task_list() memoizes list ids by name for the lifetime of
    the instance; the lookup itself is safe to repeat.
    """

    def __init__(
        self,
        secrets: SecretsProvider,
        api_base: Optional[str] = None,
        token_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """
        Initialize the Google Tasks client.

        Args:
            secrets: Provider of the OAuth client id/secret and refresh token
            api_base: Tasks API root (env: GOOGLE_TASKS_API_BASE)
            token_url: OAuth token endpoint (env: GOOGLE_TOKEN_URL)
            timeout: Per-request timeout in seconds (env: REMOTE_TIMEOUT_SECONDS)
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.secrets = secrets
        self.api_base = (api_base or config.GOOGLE_TASKS_API_BASE).rstrip("/")
        self.token_url = token_url or config.GOOGLE_TOKEN_URL
        self.timeout = timeout if timeout is not None else config.REMOTE_TIMEOUT_SECONDS
        self._http = httpx.Client(timeout=self.timeout, transport=transport)
        self._access_token: Optional[str] = None
        self._token_lock = threading.Lock()
        self._list_ids: dict[str, str] = {}
        self._list_lock = threading.Lock()

    def close(self):
        self._http.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    # ------------------------------------------------------------------
    # Transport

    def _refresh_access_token(self) -> str:
        """Exchange the refresh token for a new access token."""
        creds = self.secrets.load()
        response = self._http.post(self.token_url, data={
            "client_id": creds.client_id,
            "client_secret": creds.client_secret,
            "refresh_token": creds.refresh_token,
            "grant_type": "refresh_token",
        })
        if response.status_code != 200:
            raise RemoteServiceError(
                f"Token refresh failed: {response.status_code} {response.text}",
                status_code=response.status_code,
            )
        token = response.json().get("access_token")
        if not token:
            raise RemoteServiceError("Token refresh returned no access_token")
        return token

    def check_credentials(self):
        """
        Raises:
            SecretsUnavailableError: if the OAuth credentials are incomplete
        """
        self.secrets.load()

    def _token(self, refresh: bool = False) -> str:
        with self._token_lock:
            if refresh or not self._access_token:
                self._access_token = self._refresh_access_token()
            return self._access_token

    def _request(
        self,
        method: str,
        path: str,
        params: Optional[dict] = None,
        json: Optional[dict] = None,
        allow_404: bool = False,
    ) -> Optional[dict]:
        url = f"{self.api_base}{path}"
        headers = {"Authorization": f"Bearer {self._token()}"}
        response = self._http.request(method, url, params=params, json=json, headers=headers)

        if response.status_code == 401:
            headers["Authorization"] = f"Bearer {self._token(refresh=True)}"
            response = self._http.request(method, url, params=params, json=json, headers=headers)

        if response.status_code == 404 and allow_404:
            return None

        if response.status_code >= 400:
            raise RemoteServiceError(
                f"{method} {path} failed: {response.status_code} {response.text}",
                status_code=response.status_code,
            )

        if not response.content:
            return {}
        return response.json()

    def _paginate(self, path: str, params: Optional[dict] = None) -> list[dict]:
        items: list[dict] = []
        query = dict(params or {})
        query["maxResults"] = PAGE_SIZE
        while True:
            data = self._request("GET", path, params=query) or {}
            items.extend(data.get("items", []))
            page_token = data.get("nextPageToken")
            if not page_token:
                return items
            query["pageToken"] = page_token

    # ------------------------------------------------------------------
    # Lists

    def list_task_lists(self) -> list[RemoteList]:
        """Get all task lists."""
        return [RemoteList.from_api(item) for item in self._paginate("/users/@me/lists")]

    def find_or_create_task_list(self, name: str) -> str:
        """
        Return the id of the list titled exactly `name`, creating it if needed.

        Matching is case-sensitive.
        """
        with self._list_lock:
            if name in self._list_ids:
                return self._list_ids[name]

            for task_list in self.list_task_lists():
                if task_list.title == name and task_list.id:
                    self._list_ids[name] = task_list.id
                    return task_list.id

            created = self._request("POST", "/users/@me/lists", json={"title": name}) or {}
            list_id = created.get("id")
            if not list_id:
                raise RemoteServiceError(f"Failed to create task list: {name}")

            logger.info(f"Created new task list: {name}")
            self._list_ids[name] = list_id
            return list_id

    # ------------------------------------------------------------------
    # Tasks

    def list_tasks(
        self,
        list_id: str,
        include_completed: bool = True,
        include_deleted: bool = False,
    ) -> list[RemoteItem]:
        """Get every task in a list (hidden tasks included)."""
        params = {
            "showCompleted": str(include_completed).lower(),
            "showHidden": "true",
            "showDeleted": str(include_deleted).lower(),
        }
        return [
            RemoteItem.from_api(item, list_id)
            for item in self._paginate(f"/lists/{list_id}/tasks", params)
        ]

    def get_task(self, list_id: str, task_id: str) -> Optional[RemoteItem]:
        """Get a task, or None if it does not exist."""
        data = self._request("GET", f"/lists/{list_id}/tasks/{task_id}", allow_404=True)
        if data is None:
            return None
        return RemoteItem.from_api(data, list_id)

    def task_exists(self, list_id: str, task_id: str) -> bool:
        task = self.get_task(list_id, task_id)
        return task is not None and not task.deleted

    def create_task(
        self,
        list_id: str,
        title: str,
        notes: Optional[str] = None,
        due: Optional[datetime] = None,
        completed: bool = False,
    ) -> str:
        """Create a task and return its id."""
        body: dict[str, Any] = {
            "title": title,
            "status": STATUS_COMPLETED if completed else STATUS_NEEDS_ACTION,
        }
        if notes:
            body["notes"] = notes
        if due:
            body["due"] = format_rfc3339(due)

        created = self._request("POST", f"/lists/{list_id}/tasks", json=body) or {}
        task_id = created.get("id")
        if not task_id:
            raise RemoteServiceError("Failed to create task: no ID returned")
        return task_id

    def update_task(
        self,
        list_id: str,
        task_id: str,
        title: Optional[str] = None,
        notes: Optional[str] = None,
        due: Optional[datetime] = None,
        completed: Optional[bool] = None,
    ) -> RemoteItem:
        """Patch only the fields that were given."""
        body: dict[str, Any] = {}
        if title is not None:
            body["title"] = title
        if notes is not None:
            body["notes"] = notes
        if due is not None:
            body["due"] = format_rfc3339(due)
        if completed is not None:
            body["status"] = STATUS_COMPLETED if completed else STATUS_NEEDS_ACTION
            if not completed:
                # The API keeps the old completion date unless it is cleared
                body["completed"] = None

        data = self._request("PATCH", f"/lists/{list_id}/tasks/{task_id}", json=body) or {}
        return RemoteItem.from_api(data, list_id)

    def delete_task(self, list_id: str, task_id: str):
        self._request("DELETE", f"/lists/{list_id}/tasks/{task_id}", allow_404=True)

    def test_connection(self) -> bool:
        """Test connection to Google Tasks."""
        try:
            self.list_task_lists()
            return True
        except Exception:
            return False
