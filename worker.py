"""Celery worker: webhook fan-out and stored PDF cleanup."""
import asyncio
import os
from pathlib import Path

from celery import Celery
from dotenv import load_dotenv
from sqlalchemy import select

# Load .env so REDIS_URL, DATABASE_URL etc. are available in worker
load_dotenv(Path(__file__).resolve().parent / ".env")

app = Celery(
    "agreement_pdf",
    broker=os.getenv("REDIS_URL", "redis://localhost:6379"),
    backend=os.getenv("REDIS_URL", "redis://localhost:6379"),
)
app.conf.timezone = "UTC"


def _settings():
    from config import Settings
    return Settings.from_env()


def _session_factory():
    from database import create_db_engine, make_session_factory
    return make_session_factory(create_db_engine(_settings().database_url))


@app.task
def notify_webhooks(event, data):
    """Deliver an agreement event to every enabled webhook endpoint."""
    from models import WebhookEndpoint
    from webhooks import deliver_event

    db = _session_factory()()
    try:
        endpoints = list(db.scalars(select(WebhookEndpoint).where(WebhookEndpoint.enabled.is_(True))).all())
    finally:
        db.close()
    return {"event": event, **deliver_event(endpoints, event, data)}


@app.task
def purge_stored_pdf(key):
    """Delete a stored agreement PDF by storage key (administrative cleanup)."""
    from storage_service import SupabaseBlobStore

    settings = _settings()
    store = SupabaseBlobStore(
        settings.supabase_url,
        settings.supabase_key,
        f"Bearer {settings.supabase_key}",
        bucket=settings.storage_bucket,
    )
    asyncio.run(store.delete(key))
    return {"status": "deleted", "key": key}
