from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from billbot.api.deps import get_registry
from billbot.api.routes import bills, chat, health, models
from billbot.config import settings
from billbot.services import logger as log_service


@asynccontextmanager
async def lifespan(app: FastAPI):
    registry = get_registry()
    registry.start_sweeper()
    log_service.log_event(event_type="startup", message="Bill Bot API started")
    yield
    await registry.stop_sweeper()
    await registry.close_all()
    log_service.log_event(event_type="shutdown", message="Bill Bot API stopped")


app = FastAPI(
    title="Bill Bot",
    description="Legislative Q&A over congressional bills and executive actions",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Session-Id"],
)

# Routes
app.include_router(chat.router)
app.include_router(bills.router)
app.include_router(health.router)
app.include_router(models.router)
