import asyncio
import os

from fastapi import Depends, FastAPI
from sqlalchemy.orm import Session

from agentcore.config import settings
from agentcore.database import get_db, init_db
from agentcore.logging_config import get_logger, setup_logging
from agentcore.models import BusinessRule, Conversation, Customer, Message
from agentcore.routers import agent, conversations, rules, webhook
from agentcore.runtime import build_runtime

setup_logging(settings.log_level)

app = FastAPI(
    title="Agent Core",
    description="Conversational sales agent for chat provider webhooks",
    version="0.1.0",
)

app.include_router(webhook.router)
app.include_router(agent.router)
app.include_router(rules.router)
app.include_router(conversations.router)

worker_logger = get_logger("queue_worker")
_queue_worker_task: asyncio.Task | None = None


def _is_env_enabled(value: str | None, default: bool = True) -> bool:
    if value is None:
        return default
    return value.strip().lower() not in {"0", "false", "no", "off"}


def _is_queue_worker_enabled() -> bool:
    if os.environ.get("PYTEST_CURRENT_TEST"):
        return False
    return _is_env_enabled(os.environ.get("QUEUE_WORKER_ENABLED"), default=settings.queue_worker_enabled)


@app.on_event("startup")
async def start_runtime() -> None:
    global _queue_worker_task
    if settings.auto_create_tables:
        init_db()
    if getattr(app.state, "runtime", None) is None:
        app.state.runtime = build_runtime(settings)

    if not _is_queue_worker_enabled():
        return
    if _queue_worker_task is None or _queue_worker_task.done():
        _queue_worker_task = asyncio.create_task(app.state.runtime.queue.run())
        worker_logger.info("Queue worker started")


@app.on_event("shutdown")
async def stop_runtime() -> None:
    global _queue_worker_task
    if _queue_worker_task is not None:
        _queue_worker_task.cancel()
        try:
            await _queue_worker_task
        except asyncio.CancelledError:
            pass
        _queue_worker_task = None

    runtime = getattr(app.state, "runtime", None)
    if runtime is not None:
        runtime.close()


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/db-check")
def db_check(db: Session = Depends(get_db)):
    return {
        "status": "ok",
        "customers": db.query(Customer).count(),
        "conversations": db.query(Conversation).count(),
        "messages": db.query(Message).count(),
        "rules": db.query(BusinessRule).count(),
    }
