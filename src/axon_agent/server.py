"""axon_agent.server

HTTP surface (FastAPI):

    GET    /health
    POST   /api/sandbox               sandbox actions, always HTTP 200
    GET    /api/search?query=...      web search (simulated without a key)
    GET    /api/download?filename=... generated file (session_id optional)
    POST   /api/chat                  run one turn {session_id?, message}
    GET    /api/sessions              history list
    GET    /api/sessions/{id}         full session snapshot
    POST   /api/sessions/{id}/cancel  cancel the running turn
    POST   /api/sessions/{id}/new     start over in the same session
    DELETE /api/sessions/{id}         discard the session

Route handlers are plain `def` so the blocking agent loop runs in the
threadpool, one request per worker thread.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

import httpx
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool

from .agent import AgentBusyError, SessionManager, SessionNotFound, session_factory_from_config
from .config import AppConfig, load_config
from .errors import ToolExecutionError
from .llm import ResponsesClient
from .models import utc_now
from .sandbox import WORKDIR, ArtifactStore, SandboxFactory, SandboxRunner
from .search import SearchClient

_LOG = logging.getLogger("axon_agent.server")


class ChatBody(BaseModel):
    message: str
    session_id: Optional[str] = None


def create_app(
    config: AppConfig | None = None,
    *,
    responses_client: Optional[ResponsesClient] = None,
    sandbox_factory: Optional[SandboxFactory] = None,
    search_transport: Optional[httpx.BaseTransport] = None,
    fetch_transport: Optional[httpx.BaseTransport] = None,
) -> FastAPI:
    cfg = config or load_config()
    artifacts = ArtifactStore()

    sandbox = SandboxRunner(
        api_key=cfg.e2b_api_key,
        timeout_s=cfg.sandbox_timeout_s,
        lifetime_s=int(cfg.sandbox_lifetime_s),
        sandbox_factory=sandbox_factory,
        artifacts=artifacts,
    )
    search = SearchClient(api_key=cfg.tavily_api_key, timeout_s=cfg.search_timeout_s, transport=search_transport)
    sessions = SessionManager(
        session_factory_from_config(
            cfg,
            responses_client=responses_client,
            sandbox_factory=sandbox_factory,
            search_transport=search_transport,
            fetch_transport=fetch_transport,
            artifacts=artifacts,
        )
    )

    app = FastAPI(title="axon-agent")
    app.state.config = cfg
    app.state.sessions = sessions
    app.state.artifacts = artifacts
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    if not cfg.model_configured:
        _LOG.warning("capability_missing name=model hint=set OPENAI_API_KEY")
    if not cfg.tavily_api_key:
        _LOG.warning("capability_missing name=search hint=set TAVILY_API_KEY (simulated results)")
    if not cfg.e2b_api_key:
        _LOG.warning("capability_missing name=sandbox hint=set E2B_API_KEY")

    @app.get("/health")
    def health() -> dict[str, Any]:
        return {"status": "ok", "timestamp": utc_now().isoformat(), "capabilities": cfg.capabilities()}

    # ---- tool backends ----

    @app.post("/api/sandbox")
    async def sandbox_route(request: Request) -> dict[str, Any]:
        try:
            body = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            return {"success": False, "error": "Failed to parse request", "files": []}
        if not isinstance(body, dict):
            return {"success": False, "error": "Failed to parse request", "files": []}
        return await run_in_threadpool(sandbox.handle, body)

    @app.get("/api/search")
    def search_route(query: Optional[str] = None) -> Any:
        if not query or not query.strip():
            return JSONResponse(status_code=400, content={"error": "Query parameter required"})
        try:
            return search.search(query).to_dict()
        except ToolExecutionError as e:
            return JSONResponse(status_code=502, content={"error": "Search failed", "message": e.reason})

    @app.get("/api/download")
    def download_route(filename: Optional[str] = None, session_id: Optional[str] = None) -> Response:
        if not filename:
            return JSONResponse(status_code=400, content={"error": "Filename required"})
        if filename.startswith("/") or "\\" in filename or ".." in filename.split("/"):
            return JSONResponse(status_code=400, content={"error": "Invalid filename"})

        data = artifacts.get(filename, scope=session_id)
        if data is None:
            try:
                data = sandbox.read_bytes(f"{WORKDIR}/{filename}")
            except ToolExecutionError as e:
                _LOG.info("download_failed filename=%s reason=%s", filename, e.reason)
                return JSONResponse(status_code=404, content={"error": "File not found"})
        base = filename.rsplit("/", 1)[-1]
        return Response(
            content=data,
            media_type="application/octet-stream",
            headers={"Content-Disposition": f'attachment; filename="{base}"'},
        )

    # ---- chat sessions ----

    @app.post("/api/chat")
    def chat_route(body: ChatBody) -> dict[str, Any]:
        if not body.message.strip():
            raise HTTPException(400, "Missing 'message'.")
        session = sessions.get_or_create(body.session_id)
        try:
            result = session.run_turn(body.message)
        except AgentBusyError as e:
            raise HTTPException(409, str(e)) from e
        return {"session": session.snapshot(), "turn": result.to_dict()}

    @app.get("/api/sessions")
    def list_sessions() -> dict[str, Any]:
        return {"sessions": sessions.summaries()}

    @app.get("/api/sessions/{session_id}")
    def get_session(session_id: str) -> dict[str, Any]:
        try:
            return sessions.get(session_id).snapshot()
        except SessionNotFound as e:
            raise HTTPException(404, "Session not found") from e

    @app.post("/api/sessions/{session_id}/cancel")
    def cancel_session(session_id: str) -> dict[str, Any]:
        try:
            session = sessions.get(session_id)
        except SessionNotFound as e:
            raise HTTPException(404, "Session not found") from e
        session.cancel()
        return {"cancelled": True, "processing": session.is_processing}

    @app.post("/api/sessions/{session_id}/new")
    def new_chat(session_id: str) -> dict[str, Any]:
        try:
            session = sessions.get(session_id)
            session.new_chat()
        except SessionNotFound as e:
            raise HTTPException(404, "Session not found") from e
        except AgentBusyError as e:
            raise HTTPException(409, str(e)) from e
        return session.snapshot()

    @app.delete("/api/sessions/{session_id}")
    def delete_session(session_id: str) -> dict[str, Any]:
        if not sessions.discard(session_id):
            raise HTTPException(404, "Session not found")
        artifacts.drop(session_id)
        return {"deleted": True}

    return app
