"""Newsroom device trust service - FastAPI application entry point."""

from contextlib import asynccontextmanager

from fastapi import FastAPI, WebSocket, Query
from fastapi.middleware.cors import CORSMiddleware

from newsroom.config import settings
from newsroom.database import init_db


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize the database on startup."""
    init_db()
    yield


app = FastAPI(
    title="Newsroom",
    description="Device trust registry and realtime change feed for the newsroom",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --- Register API routers ---
from newsroom.api.auth import router as auth_router  # noqa: E402
from newsroom.api.devices import router as devices_router  # noqa: E402
from newsroom.api.activity import router as activity_router  # noqa: E402

API_PREFIX = "/api/v1"

app.include_router(auth_router, prefix=API_PREFIX)
app.include_router(devices_router, prefix=API_PREFIX)
app.include_router(activity_router, prefix=API_PREFIX)


# --- WebSocket endpoints ---
from newsroom.ws.changes import websocket_changes  # noqa: E402


@app.websocket("/ws/changes")
async def ws_changes_endpoint(
    ws: WebSocket,
    token: str = Query(default=""),
    channel: str = Query(default=""),
):
    await websocket_changes(ws, token or None, channel)


@app.get("/")
def root():
    """Health check / server info."""
    return {
        "name": settings.server_name,
        "version": "0.1.0",
        "status": "running",
    }


@app.get("/api/v1/health")
def health():
    return {"status": "ok"}
