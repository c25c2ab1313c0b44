import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from . import database
from .api import status, subscriptions, webhooks
from .config import Settings, settings as default_settings
from .delivery import WebhookSender
from .dispatcher import Dispatcher
from .utils.logging import setup_logging
from .worker.retry import RetryWorker

logger = logging.getLogger(__name__)


def create_app(settings: Settings = None, session_factory=None, sender: WebhookSender = None) -> FastAPI:
    settings = settings or default_settings

    if session_factory is None:
        database.init_db(database.engine)
        session_factory = database.SessionLocal

    sender = sender or WebhookSender(timeout=settings.request_timeout_seconds)

    queue = None
    if settings.delivery_backend == "rq":
        from .worker.tasks import get_queue

        queue = get_queue(settings.redis_url, settings.rq_queue_name)

    dispatcher = Dispatcher(
        session_factory,
        sender,
        max_attempts=settings.max_retry_attempts,
        max_workers=settings.dispatch_max_workers,
        max_pending=settings.dispatch_max_pending,
        queue=queue,
    )
    retry_worker = RetryWorker(session_factory, sender, settings)

    app = FastAPI(
        title="hookrelay",
        description="Signed webhook delivery with a durable ledger and background retries",
        version="1.0.0",
    )
    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.dispatcher = dispatcher
    app.state.retry_worker = retry_worker
    app.state.queue = queue

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(subscriptions.router, prefix="/users/{user_id}/webhooks", tags=["webhooks"])
    app.include_router(status.router, prefix="/users", tags=["users"])
    app.include_router(webhooks.router, prefix="/events", tags=["events"])

    @app.get("/")
    def read_root():
        return {"message": "Welcome to hookrelay"}

    @app.get("/health")
    def health_check():
        db = session_factory()
        try:
            db.execute(text("SELECT 1"))
            db_status = "healthy"
        except Exception as e:
            db_status = f"unhealthy: {str(e)}"
        finally:
            db.close()

        result = {"status": "up", "database": db_status}

        if queue is not None:
            try:
                queue.connection.ping()
                result["redis"] = "healthy"
            except Exception as e:
                result["redis"] = f"unhealthy: {str(e)}"

        return result

    @app.get("/health/worker")
    def worker_health_check():
        """Status of the in-process retry worker."""
        return {"retry_worker": retry_worker.status()}

    @app.on_event("startup")
    async def startup_event():
        if settings.retry_worker_enabled:
            retry_worker.start()

    @app.on_event("shutdown")
    async def shutdown_event():
        retry_worker.stop()
        dispatcher.shutdown(wait=True)
        sender.close()

    return app


def build_app() -> FastAPI:
    """uvicorn factory: ``uvicorn hookrelay.main:build_app --factory``."""
    setup_logging(default_settings.log_level, default_settings.json_logging)
    return create_app()
