from contextlib import asynccontextmanager
import logging
from typing import Optional

from fastapi import FastAPI, Query, Request, WebSocket
from fastapi.middleware.cors import CORSMiddleware

from groupchat.core.config import settings
from groupchat.db.database import engine, Base, AsyncSessionLocal
from groupchat.api import auth, groups, messages, files
from groupchat.websocket.hub import ChatHub
from groupchat.websocket.chat import ChatHubHandler

# Logging
logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    app.state.hub = ChatHub()
    logger.info("🟢 Application started")

    yield

    # Shutdown
    await app.state.hub.close_all()
    await engine.dispose()
    logger.info("🔴 Application stopped")


def create_app() -> FastAPI:
    app = FastAPI(
        title="GroupChat API",
        description="Real-time group chat backend",
        version="1.0.0",
        lifespan=lifespan
    )

    app.state.session_factory = AsyncSessionLocal

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routers
    app.include_router(auth.router, prefix="/api/auth", tags=["auth"])
    app.include_router(groups.router, prefix="/api/groups", tags=["groups"])
    app.include_router(messages.router, prefix="/api/messages", tags=["messages"])
    app.include_router(files.router, prefix="/api/files", tags=["files"])

    # Live endpoint
    @app.websocket("/chathub")
    async def chathub_endpoint(websocket: WebSocket, access_token: Optional[str] = Query(None)):
        handler = ChatHubHandler(websocket.app.state.hub, websocket.app.state.session_factory)
        await handler.handle_connection(websocket, access_token)

    # Monitoring
    @app.get("/api/debug/hub-stats")
    async def get_hub_stats(request: Request):
        return request.app.state.hub.get_connection_stats()

    @app.get("/health")
    async def health_check():
        return {"status": "healthy"}

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
