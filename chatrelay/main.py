# chatrelay/main.py
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import sessionmaker

from chatrelay.core import config
from chatrelay.core.chat.turn import TurnOrchestrator
from chatrelay.core.database import init_db, make_engine, make_session_factory
from chatrelay.core.errors import ChatError
from chatrelay.core.generation import GenerationEngine
from chatrelay.core.streaming import create_stream_broker
from chatrelay.core.tasks import TaskSupervisor
from chatrelay.routers import auth, chat, model

SHUTDOWN_DRAIN_SECONDS = 30


def create_app(
    session_factory: Optional[sessionmaker] = None,
    generation_engine: Optional[GenerationEngine] = None,
    stream_broker_url: Optional[str] = config.STREAM_BROKER_URL,
    retention_seconds: float = config.STREAM_RETENTION_SECONDS,
    max_messages_per_day: int = config.MAX_MESSAGES_PER_DAY,
) -> FastAPI:
    """
    Build the application. Services are constructed once per process in the
    lifespan and handed to the routes through ``app.state``.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        factory = session_factory
        if factory is None:
            engine = make_engine(config.DATABASE_URL)
            # Initialize the database (create tables if needed)
            init_db(engine)
            factory = make_session_factory(engine)

        supervisor = TaskSupervisor()
        broker = create_stream_broker(
            stream_broker_url,
            supervisor,
            retention_seconds=retention_seconds,
            tombstone_seconds=config.STREAM_TOMBSTONE_SECONDS,
            idle_timeout_seconds=config.STREAM_IDLE_TIMEOUT_SECONDS,
        )
        engine_ = generation_engine or GenerationEngine(config.LLM_BASE_URL, config.LLM_API_KEY)

        app.state.session_factory = factory
        app.state.supervisor = supervisor
        app.state.stream_broker = broker
        app.state.orchestrator = TurnOrchestrator(
            factory,
            broker,
            engine_,
            supervisor,
            max_messages_per_day=max_messages_per_day,
        )
        try:
            yield
        finally:
            # let in-flight turns finish writing before the process exits
            await supervisor.drain(timeout=SHUTDOWN_DRAIN_SECONDS)
            await broker.close()

    app = FastAPI(title="chatrelay", lifespan=lifespan)

    # Add CORS middleware (set CORS_ALLOW_ORIGINS for production)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ALLOW_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ChatError)
    async def chat_error_handler(request: Request, exc: ChatError):
        return exc.to_response()

    # Include routers
    app.include_router(auth.router, prefix="/auth", tags=["Authentication"])
    app.include_router(chat.router, prefix="/chat", tags=["Chat"])
    app.include_router(model.router, prefix="/models", tags=["Model"])

    @app.get("/")
    def read_root():
        return {"message": "chatrelay is running."}

    return app


app = create_app()
