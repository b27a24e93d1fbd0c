"""
FastAPI Backend for ClipRelay

Runs the outbox dispatcher, job queue worker and creator watcher, and
exposes a small HTTP surface for forwarding links and inspecting state.
"""
import os
import sys
from dataclasses import asdict
from typing import Callable, List, Optional
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
from loguru import logger
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded

from config import settings
from database import init_db, close_db, get_session_factory, QueueRepository, TrackedCreatorRepository, transaction
from errors import ChainExhaustedError, EngineNotFoundError, ValidationError
from forwarder import ChannelId, CreatorUsername, RoleId
from job_queue import QueuePayload
from api.wiring import Pipeline, build_pipeline

PipelineFactory = Callable[[], Pipeline]


def configure_logging(level: str):
    logger.remove()
    logger.add(sys.stderr, level=level.upper())


def default_pipeline() -> Pipeline:
    return build_pipeline(settings, get_session_factory())


# === Pydantic Models ===

class ForwardRequest(BaseModel):
    """Forward a post link (or a message containing one) to its mapped channels"""
    url: Optional[str] = Field(None, description="Post URL")
    text: Optional[str] = Field(None, description="Free text containing a post URL")
    username: Optional[str] = Field(None, description="Creator handle, if known")
    source_guild_name: Optional[str] = Field(None, description="Where the link was shared")


class ForwardResponse(BaseModel):
    event_ids: List[str]
    count: int


class QueueRequest(BaseModel):
    """Queue a one-off delivery to a specific channel"""
    url: str
    username: str
    channel_id: str
    role_id: Optional[str] = None
    source_server: Optional[str] = None
    message: Optional[str] = None


class QueueResponse(BaseModel):
    job_id: int


class TrackCreatorRequest(BaseModel):
    """Start watching a creator for new posts"""
    username: str
    check_interval: Optional[int] = Field(None, description="Minutes between checks", ge=1, le=1440)


class CreatorResponse(BaseModel):
    username: str
    last_video_id: Optional[str]
    last_video_published_at: Optional[str]
    check_interval: int
    next_check_at: Optional[str]
    last_checked_at: Optional[str]
    enabled: bool
    error_count: int
    last_error: Optional[str]


def create_app(pipeline_factory: Optional[PipelineFactory] = None, run_workers: bool = True) -> FastAPI:
    """
    Build the application.

    Args:
        pipeline_factory: Returns the wired pipeline once the database is ready
        run_workers: Start the background workers during lifespan
    """
    factory = pipeline_factory or default_pipeline

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan - handle startup and shutdown"""
        configure_logging(settings.LOG_LEVEL)
        logger.info("Starting ClipRelay API...")

        await init_db()
        logger.info("Database initialized")

        pipeline = factory()
        app.state.pipeline = pipeline
        if run_workers:
            await pipeline.start()

        yield

        logger.info("Shutting down ClipRelay API...")
        await pipeline.stop()
        await close_db()
        logger.info("Shutdown complete")

    limiter = Limiter(key_func=get_remote_address)

    app = FastAPI(
        title="ClipRelay API",
        description="Reliable relay of new creator posts into chat channels",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    cors_origins = os.environ.get("CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000").split(",")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )

    @app.get("/health")
    async def health(request: Request):
        pipeline: Pipeline = request.app.state.pipeline
        return {
            "status": "ok",
            "workers": {worker.name: worker.is_running for worker in pipeline.workers},
        }

    @app.get("/stats")
    async def stats(request: Request):
        pipeline: Pipeline = request.app.state.pipeline
        async with transaction(pipeline.session_factory) as session:
            pending = await pipeline.outbox.count_pending(session)
            queue = await QueueRepository(session).count_by_status()

        last_run = pipeline.queue_worker.last_result
        return {
            "outbox": {"pending": pending, "dispatcher": pipeline.dispatcher.stats.to_dict()},
            "queue": {
                "jobs": queue,
                "last_run": asdict(last_run) if last_run else None,
            },
            "engines": await pipeline.chain.execution_list(),
        }

    @app.post("/forward", response_model=ForwardResponse)
    @limiter.limit("30/minute")
    async def forward(request: Request, body: ForwardRequest):
        pipeline: Pipeline = request.app.state.pipeline
        try:
            if body.url:
                event_ids = await pipeline.use_case.execute(
                    body.url, username=body.username, source_guild_name=body.source_guild_name
                )
            elif body.text:
                event_ids = await pipeline.use_case.execute_from_text(
                    body.text, username=body.username, source_guild_name=body.source_guild_name
                )
            else:
                raise ValidationError("Either url or text is required")
        except ValidationError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except (ChainExhaustedError, EngineNotFoundError) as e:
            raise HTTPException(status_code=502, detail=str(e))

        return ForwardResponse(event_ids=event_ids, count=len(event_ids))

    @app.post("/queue", response_model=QueueResponse)
    @limiter.limit("30/minute")
    async def enqueue(request: Request, body: QueueRequest):
        pipeline: Pipeline = request.app.state.pipeline
        try:
            username = CreatorUsername.create(body.username)
            channel_id = ChannelId.create(body.channel_id)
            role_id = RoleId.create(body.role_id) if body.role_id else None
        except ValidationError as e:
            raise HTTPException(status_code=400, detail=str(e))

        job_id = await pipeline.queue_service.enqueue(QueuePayload(
            url=body.url,
            username=username.value,
            channel_id=channel_id.value,
            role_id=role_id.value if role_id else None,
            source_server=body.source_server,
            message=body.message,
        ))
        return QueueResponse(job_id=job_id)

    @app.get("/creators", response_model=List[CreatorResponse])
    async def list_creators(request: Request):
        pipeline: Pipeline = request.app.state.pipeline
        async with transaction(pipeline.session_factory) as session:
            creators = await TrackedCreatorRepository(session).get_all()
            return [CreatorResponse(**creator.to_dict()) for creator in creators]

    @app.post("/creators", response_model=CreatorResponse, status_code=201)
    async def track_creator(request: Request, body: TrackCreatorRequest):
        """Track a creator; the first check only records the newest post as baseline"""
        pipeline: Pipeline = request.app.state.pipeline
        try:
            username = CreatorUsername.create(body.username)
        except ValidationError as e:
            raise HTTPException(status_code=400, detail=str(e))

        async with transaction(pipeline.session_factory) as session:
            repo = TrackedCreatorRepository(session)
            if await repo.get(username.value):
                raise HTTPException(status_code=409, detail=f"Already tracking @{username}")
            creator = await repo.add(
                username.value,
                check_interval=body.check_interval or settings.WATCHER_CREATOR_INTERVAL,
            )
            return CreatorResponse(**creator.to_dict())

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "api.main:app",
        host=settings.API_HOST,
        port=settings.API_PORT,
        reload=settings.DEBUG,
        loop="asyncio",
    )
