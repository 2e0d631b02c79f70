# -*- coding: utf-8 -*-
"""
CoachChat reference chat server

Rooms, message history, attachments and websocket push for client/dietitian chat.
"""

from __future__ import annotations

from datetime import datetime, timezone

from fastapi import FastAPI, HTTPException, Request, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from .app_db import init_app_db
from .auth.api import router as users_router
from .auth.security import get_current_user_from_request
from .chat.api import router as chat_router
from .chat.realtime import chat_websocket_endpoint
from .config import settings

app = FastAPI(
    title="CoachChat",
    description="Client/dietitian chat: rooms, messages, realtime push",
    version="1.0.0",
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Ensure the app DB exists even when lifespan events are not triggered (e.g. some test clients).
init_app_db(settings.app_db_path)
settings.media_root.mkdir(parents=True, exist_ok=True)


_AUTH_EXEMPT_PREFIXES = (
    "/api/docs",
    "/api/redoc",
    "/api/openapi.json",
)


@app.middleware("http")
async def _auth_gate(request: Request, call_next):
    path = request.url.path
    if path.startswith("/api") and path != "/api/health" and not any(path.startswith(p) for p in _AUTH_EXEMPT_PREFIXES):
        try:
            user = get_current_user_from_request(request)
            request.state.user = user
        except HTTPException as exc:
            return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})
    return await call_next(request)


app.include_router(users_router)
app.include_router(chat_router)
app.mount("/media", StaticFiles(directory=str(settings.media_root)), name="media")


@app.get("/api/health")
def health_check():
    return {
        "status": "ok",
        "version": "1.0.0",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@app.websocket("/ws/chat/{room_id}/")
async def chat_websocket(websocket: WebSocket, room_id: int):
    """Push-only chat websocket for one room"""
    await chat_websocket_endpoint(websocket, room_id)


def run() -> None:
    """Console entry point (used by pyproject [project.scripts])."""
    import uvicorn

    uvicorn.run("coachchat.api:app", host=settings.host, port=settings.port, reload=False)
