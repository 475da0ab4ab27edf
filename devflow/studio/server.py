"""FastAPI backend for devflow Studio.

This module provides:
- Request/response endpoints for the workflow verbs (execute, stop,
  execute single node, read context)
- WebSocket push of the serialized execution context on every mutation

Every endpoint returns the service's ``{success, error?}`` dict unchanged, so
node-level failures surface in the execution log rather than as HTTP errors.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import os
from typing import Any

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from devflow import __version__
from devflow.config import load_settings
from devflow.core.service import WorkflowService

logger = logging.getLogger(__name__)

LOCAL_HOSTS = ("127.0.0.1", "localhost", "::1")

app = FastAPI(
    title="devflow Studio API",
    description="API for running device workflows",
    version=__version__,
)


# CORS for the local editor - restricted to known origins
def _get_allowed_origins() -> list[str]:
    """Build allowed origins list including the configured port."""
    origins = [
        "http://localhost:3000",
        "http://localhost:5173",
        "http://127.0.0.1:3000",
        "http://127.0.0.1:5173",
    ]

    configured_port = os.environ.get("DEVFLOW_STUDIO_PORT")
    if configured_port and configured_port not in ("3000", "5173"):
        origins.extend(
            [
                f"http://localhost:{configured_port}",
                f"http://127.0.0.1:{configured_port}",
            ]
        )

    return origins


ALLOWED_ORIGINS = _get_allowed_origins()

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def validate_request_origin(request: Request, call_next):
    """
    Reject requests from unknown origins.

    Browser requests must carry an allowed Origin header. Requests without
    one (scripts, curl) must come from localhost.
    """
    if request.headers.get("upgrade", "").lower() == "websocket":
        return await call_next(request)

    origin = request.headers.get("origin")
    client_host = request.client.host if request.client else None

    if origin:
        if origin not in ALLOWED_ORIGINS:
            return JSONResponse(
                status_code=403,
                content={"detail": f"Origin '{origin}' not allowed"},
            )
    elif client_host not in LOCAL_HOSTS:
        return JSONResponse(
            status_code=403,
            content={"detail": "Origin header required for non-localhost requests"},
        )

    return await call_next(request)


# Global service - initialized lazily
_service: WorkflowService | None = None


def get_service() -> WorkflowService:
    global _service
    if _service is None:
        _service = WorkflowService(settings=load_settings())
    return _service


def set_service(service: WorkflowService | None) -> None:
    """Install the service used by all endpoints (CLI startup and tests)."""
    global _service
    _service = service


# ========== Request Models ==========


class ExecuteWorkflowRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    nodes: list[dict[str, Any]]
    edges: list[dict[str, Any]] = Field(default_factory=list)
    connection_key: str = Field(alias="connectionKey")
    name: str | None = None


class ExecuteNodeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    node: dict[str, Any]
    connection_key: str = Field(alias="connectionKey")


# ========== Workflow Endpoints ==========


@app.get("/api/health")
def health() -> dict[str, str]:
    return {"status": "ok", "version": __version__}


@app.post("/api/workflow/execute")
async def execute_workflow(request: ExecuteWorkflowRequest) -> dict[str, Any]:
    service = get_service()
    result = await service.execute_workflow(
        request.nodes, request.edges, request.connection_key, name=request.name
    )
    await manager.broadcast({"type": "execution_complete", "result": result})
    return result


@app.post("/api/workflow/stop")
async def stop_workflow() -> dict[str, Any]:
    return await get_service().stop_workflow()


@app.post("/api/workflow/execute-node")
async def execute_single_node(request: ExecuteNodeRequest) -> dict[str, Any]:
    return await get_service().execute_single_node(request.node, request.connection_key)


@app.get("/api/workflow/context")
def get_workflow_context() -> dict[str, Any]:
    return get_service().get_workflow_context()


# ========== WebSocket for Live Updates ==========


class ConnectionManager:
    """
    Track connected editors.

    Context updates are streamed per connection from its own snapshot
    channel; the manager only fans out run-level events such as
    ``execution_complete``.
    """

    def __init__(self):
        self.active_connections: list[WebSocket] = []

    async def connect(self, websocket: WebSocket):
        await websocket.accept()
        self.active_connections.append(websocket)

    def disconnect(self, websocket: WebSocket):
        try:
            self.active_connections.remove(websocket)
        except ValueError:
            pass

    async def broadcast(self, message: dict):
        """Broadcast message to all connected clients."""
        connections = self.active_connections[:]

        async def safe_send(conn: WebSocket):
            try:
                await conn.send_json(message)
            except Exception:
                self.disconnect(conn)

        await asyncio.gather(*[safe_send(c) for c in connections], return_exceptions=True)


manager = ConnectionManager()
_background_tasks: set[asyncio.Task] = set()


async def _close_after_push_failure(websocket: WebSocket, error: BaseException) -> None:
    logger.error(f"Context push failed, closing WebSocket: {error}")
    try:
        await websocket.close(code=1011)
    except RuntimeError as e:
        logger.debug(f"WebSocket already closed: {e}")


def _on_push_done(websocket: WebSocket, task: asyncio.Task) -> None:
    """Close the socket when the context pump dies with an error."""
    if task.cancelled() or task.exception() is None:
        return
    closer = asyncio.create_task(_close_after_push_failure(websocket, task.exception()))
    _background_tasks.add(closer)
    closer.add_done_callback(_background_tasks.discard)


@app.websocket("/ws/workflow")
async def workflow_websocket(websocket: WebSocket):
    """
    WebSocket for live execution context updates.

    Protocol:
    1. On connect: send ``initial_state`` with the current context
    2. On every store mutation: send ``context_update`` with the new context
    3. Client can send "ping", server responds with "pong"
    """
    origin = websocket.headers.get("origin")
    client_host = websocket.client.host if websocket.client else None

    if origin:
        if origin not in ALLOWED_ORIGINS:
            await websocket.close(code=4003, reason="Origin not allowed")
            return
    elif client_host not in LOCAL_HOSTS:
        await websocket.close(code=4003, reason="Non-localhost connections require Origin header")
        return

    await manager.connect(websocket)
    service = get_service()
    channel = service.open_channel()

    async def pump_updates():
        async for payload in channel:
            await websocket.send_json({"type": "context_update", "context": payload})

    pump_task: asyncio.Task | None = None

    try:
        await websocket.send_json(
            {"type": "initial_state", "context": service.get_workflow_context()}
        )
        pump_task = asyncio.create_task(pump_updates())
        pump_task.add_done_callback(functools.partial(_on_push_done, websocket))

        while True:
            try:
                msg = await asyncio.wait_for(websocket.receive_text(), timeout=30.0)
                if msg == "ping":
                    await websocket.send_json({"type": "pong"})
            except TimeoutError:
                # Send heartbeat to detect dead connections
                try:
                    await websocket.send_json({"type": "heartbeat"})
                except Exception:
                    break

    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.error(f"WebSocket error: {e}")
    finally:
        if pump_task is not None:
            pump_task.cancel()
        channel.close()
        manager.disconnect(websocket)
