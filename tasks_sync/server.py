"""
Webhook endpoint.

A single route that lets an external caller (an iOS Shortcut, a remote
machine that owns the reminders) drive the engine one operation at a time:

    POST /                      push one reminder (default action)
    POST /?action=register      record a task the caller imported itself
    POST /?action=status        push a completion change to Google
    GET  /?action=google-status completion changes made in Google
    GET  /?action=new-tasks     Google tasks with no mapping yet
    GET  /?action=synced        every mapping record
    GET  /?debug=list&listName= tasks in one Google list (created if missing)
    GET  /                      health check

Every response body carries `success`, `message` or `error`, and `timestamp`.
"""

import hmac
import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from fastapi import FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, Response

from .exceptions import MappingNotFoundError, ValidationError
from .models import ItemPayload, SyncedItem
from .sync_engine import ReconciliationEngine
from . import config

logger = logging.getLogger(__name__)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization, X-Webhook-Secret",
}

ALL_METHODS = ["GET", "POST", "OPTIONS", "PUT", "PATCH", "DELETE"]


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def _reply(status_code: int, **body) -> JSONResponse:
    body.setdefault("timestamp", _timestamp())
    return JSONResponse(body, status_code=status_code, headers=CORS_HEADERS)


def _parse_status_payload(data) -> tuple[str, bool]:
    if not isinstance(data, dict):
        raise ValidationError("Payload must be a JSON object")
    local_id = data.get("localId")
    if not local_id:
        raise ValidationError("Missing required field: localId")
    completed = data.get("completed")
    if not isinstance(completed, bool):
        raise ValidationError("Field 'completed' must be true or false")
    return str(local_id), completed


def _default_engine_factory() -> ReconciliationEngine:
    from .main import build_engine
    return build_engine(with_local=False)


def create_app(
    engine_factory: Optional[Callable[[], ReconciliationEngine]] = None,
    webhook_secret: Optional[str] = None,
) -> FastAPI:
    """
    Build the webhook application.

    Args:
        engine_factory: Returns a fresh engine per request (default reads config)
        webhook_secret: Shared secret; None reads WEBHOOK_SECRET, "" disables auth
    """
    app = FastAPI(title="Tasks Sync")
    secret = config.WEBHOOK_SECRET if webhook_secret is None else webhook_secret
    factory = engine_factory or _default_engine_factory

    def authorized(request: Request) -> bool:
        if not secret:
            return True
        provided = request.headers.get("x-webhook-secret") or request.query_params.get("secret") or ""
        return hmac.compare_digest(provided.encode(), secret.encode())

    async def read_json(request: Request):
        try:
            return await request.json()
        except ValueError as e:
            raise ValidationError("Request body must be valid JSON") from e

    async def handle_post(request: Request, action: Optional[str]) -> JSONResponse:
        data = await read_json(request)

        # Validate before any engine work
        if action == "register":
            record = SyncedItem.from_dict(data)
        elif action == "status":
            local_id, completed = _parse_status_payload(data)
        else:
            payload = ItemPayload.from_dict(data)
            logger.info(f"Received reminder '{payload.title}' (list: {payload.list_name!r})")

        engine = await run_in_threadpool(factory)
        try:
            if action == "register":
                record = await run_in_threadpool(engine.register_item, record)
                return _reply(
                    200,
                    success=True,
                    message="Task registered successfully",
                    taskId=record.remote_item_id,
                )

            if action == "status":
                record = await run_in_threadpool(engine.push_status, local_id, completed)
                state = "completed" if completed else "incomplete"
                return _reply(
                    200,
                    success=True,
                    message=f"Task marked as {state}",
                    taskId=record.remote_item_id,
                )

            outcome = await run_in_threadpool(engine.push_item, payload)
            return _reply(
                200,
                success=True,
                message=outcome.message,
                outcome=outcome.kind,
                taskId=outcome.remote_item_id,
                localId=outcome.local_id,
            )
        finally:
            engine.close()

    async def handle_debug_list(list_name: str) -> JSONResponse:
        engine = await run_in_threadpool(factory)
        try:
            list_id, tasks = await run_in_threadpool(engine.list_items, list_name)
        finally:
            engine.close()
        return _reply(
            200,
            success=True,
            listId=list_id,
            listName=list_name,
            tasks=[{"id": t.id, "title": t.title, "status": t.status} for t in tasks],
        )

    async def handle_get(request: Request, action: Optional[str]) -> JSONResponse:
        list_name = request.query_params.get("listName")
        if action is None and request.query_params.get("debug") == "list" and list_name:
            return await handle_debug_list(list_name)

        if action not in ("google-status", "new-tasks", "synced"):
            return _reply(
                200,
                success=True,
                message="Tasks Sync webhook is running. Send POST requests with reminder data.",
            )

        engine = await run_in_threadpool(factory)
        try:
            if action == "google-status":
                changes = await run_in_threadpool(engine.remote_status_changes)
                return _reply(200, success=True, changes=[c.to_dict() for c in changes])

            if action == "new-tasks":
                found = await run_in_threadpool(engine.unmapped_remote_items)
                return _reply(
                    200,
                    success=True,
                    tasks=[task.to_dict(list_name=list_name) for task, list_name in found],
                )

            records = await run_in_threadpool(engine.mapping_records)
            return _reply(200, success=True, items=[r.to_dict() for r in records])
        finally:
            engine.close()

    @app.api_route("/", methods=ALL_METHODS)
    async def sync_handler(request: Request):
        if request.method == "OPTIONS":
            return Response(status_code=204, headers=CORS_HEADERS)

        if not authorized(request):
            logger.warning("Invalid webhook secret")
            return _reply(401, success=False, error="Unauthorized")

        action = request.query_params.get("action")
        try:
            if request.method == "POST":
                return await handle_post(request, action)
            if request.method == "GET":
                return await handle_get(request, action)
            return _reply(405, success=False, error="Method not allowed")
        except (ValidationError, MappingNotFoundError) as e:
            return _reply(400, success=False, message=str(e))
        except Exception as e:
            logger.exception("Webhook request failed")
            return _reply(500, success=False, error=str(e) or e.__class__.__name__)

    return app
