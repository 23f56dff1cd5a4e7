import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from messaging.api import chat, conversations, messages
from messaging.core.config import settings
from messaging.core.database import init_db
from messaging.core.errors import register_error_handlers
from messaging.core.sandbox import UPLOAD_SUBDIR, upload_root
from messaging.services.broker import RoomBroker

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Configure logging based on debug setting
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s" if settings.debug
        else "%(levelname)-8s %(name)s: %(message)s",
    )

    init_db()
    upload_root().mkdir(parents=True, exist_ok=True)

    app.state.broker = RoomBroker()
    logger.info(f"{settings.app_name} started")

    yield

    await app.state.broker.close()


app = FastAPI(title=settings.app_name, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_error_handlers(app)

app.include_router(conversations.router, prefix="/api/messaging", tags=["conversations"])
app.include_router(messages.router, prefix="/api/messaging", tags=["messages"])
app.include_router(chat.router, prefix="/api/messaging", tags=["chat"])

app.mount(f"/{UPLOAD_SUBDIR}", StaticFiles(directory=upload_root(), check_dir=False), name="uploads")


@app.get("/api/health")
async def health():
    return {"status": "ok", "app": settings.app_name}
