"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import settings


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.LOG_LEVEL)
    logger = logging.getLogger(__name__)
    logger.info("Chat relay starting (provider=%s, persona=%s)", settings.provider, settings.PERSONA)
    config_error = settings.upstream_config_error()
    if config_error:
        # Not fatal: requests answer 500 until the environment is fixed
        logger.warning(config_error)
    yield
    logger.info("Chat relay shutting down")


app = FastAPI(
    title="Chat Relay API",
    description="Relays chat conversations to a hosted LLM, batched or streamed",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # TODO: restrict to the web client's origin in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --- Routes ---
from app.api.routes import chat  # noqa: E402

app.include_router(chat.router, prefix="/api/chat", tags=["chat"])


@app.get("/health")
async def health_check():
    return {"status": "ok"}
