#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
mcpx Sessions
Session registry and the HTTP endpoint serving JSON-RPC tool calls
"""

import inspect
import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from .server import (
    INTERNAL_ERROR,
    INVALID_REQUEST,
    PARSE_ERROR,
    McpXServer,
    error_response,
)
from .x402.encoding import SESSION_HEADER

logger = logging.getLogger(__name__)

NO_SESSION_ERROR = -32000

SessionHook = Callable[['Session'], Any]


@dataclass
class Session:
    id: str
    server: McpXServer
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    last_seen: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def touch(self) -> None:
        self.last_seen = datetime.now(timezone.utc)


class SessionRegistry:
    """
    Live sessions keyed by session id

    on_create and on_close hooks may be plain or async callables; they run
    after the registry has been updated.
    """

    def __init__(
        self,
        on_create: Optional[SessionHook] = None,
        on_close: Optional[SessionHook] = None
    ):
        self._sessions: Dict[str, Session] = {}
        self.on_create = on_create
        self.on_close = on_close

    async def _run_hook(self, hook: Optional[SessionHook], session: Session) -> None:
        if hook is None:
            return
        result = hook(session)
        if inspect.isawaitable(result):
            await result

    async def create(self, server: McpXServer) -> Session:
        session = Session(id=str(uuid.uuid4()), server=server)
        self._sessions[session.id] = session
        logger.info(f"📱 New session initialized: {session.id}")
        await self._run_hook(self.on_create, session)
        return session

    def get(self, session_id: Optional[str]) -> Optional[Session]:
        if not session_id:
            return None
        return self._sessions.get(session_id)

    async def close(self, session_id: str) -> bool:
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        logger.info(f"👋 Session closed: {session_id}")
        await self._run_hook(self.on_close, session)
        return True

    def ids(self) -> List[str]:
        return list(self._sessions.keys())

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)


def _bad_session() -> JSONResponse:
    return JSONResponse(
        error_response(NO_SESSION_ERROR, 'Bad Request: No valid session ID provided'),
        status_code=400
    )


def _is_initialize_request(message: Any) -> bool:
    return isinstance(message, dict) and message.get('method') == 'initialize' and 'id' in message


class McpRequestHandler:
    """
    HTTP endpoint for JSON-RPC tool calls

    POST carries one JSON-RPC message. A request without a known
    mcp-session-id is only accepted when it is an initialize request, which
    creates a session with its own server from server_factory. DELETE closes
    the session. Batch messages are not accepted.
    """

    def __init__(
        self,
        server_factory: Callable[[], McpXServer],
        sessions: Optional[SessionRegistry] = None
    ):
        self.server_factory = server_factory
        self.sessions = sessions or SessionRegistry()

    async def handle(self, request: Request) -> Response:
        if request.method == 'DELETE':
            return await self._handle_delete(request)
        return await self._handle_post(request)

    async def _handle_delete(self, request: Request) -> Response:
        session_id = request.headers.get(SESSION_HEADER)
        if not session_id or not await self.sessions.close(session_id):
            return _bad_session()
        return Response(status_code=200)

    async def _handle_post(self, request: Request) -> Response:
        try:
            message = json.loads(await request.body())
        except ValueError:
            return JSONResponse(error_response(PARSE_ERROR, 'Parse error'), status_code=400)

        if isinstance(message, list):
            return JSONResponse(
                error_response(INVALID_REQUEST, 'Batch requests are not supported'),
                status_code=400
            )

        session_id = request.headers.get(SESSION_HEADER)
        session = self.sessions.get(session_id)

        if session is None:
            if session_id or not _is_initialize_request(message):
                return _bad_session()
            try:
                session = await self.sessions.create(self.server_factory())
            except Exception as e:
                logger.error(f"❌ Failed to create server for new session: {e}", exc_info=True)
                return JSONResponse(error_response(INTERNAL_ERROR, 'Internal server error'), status_code=500)

        session.touch()
        logger.debug(f"🔍 handleRequest: {message}")

        try:
            reply = await session.server.handle_message(message)
        except Exception as e:
            logger.error(f"❌ Error handling MCP request: {e}", exc_info=True)
            request_id = message.get('id') if isinstance(message, dict) else None
            return JSONResponse(
                error_response(INTERNAL_ERROR, 'Internal server error', request_id),
                status_code=500
            )

        headers = {SESSION_HEADER: session.id}
        if reply is None:
            return Response(status_code=202, headers=headers)
        return JSONResponse(reply, headers=headers)
