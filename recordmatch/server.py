"""
Server entry point: wires the in-memory store into the services and serves
the HTTP adapter with uvicorn.
"""

import argparse

import structlog
import uvicorn

from .api import create_app
from .config import get_settings
from .logging_config import setup_logging
from .services import DeduplicationService, ReconciliationService
from .store import InMemoryAuditSink, InMemoryNotificationSink, InMemoryStore

logger = structlog.get_logger()


def build_app():
    """App backed by a fresh in-memory store."""
    settings = get_settings()
    store = InMemoryStore()
    audit_sink = InMemoryAuditSink()
    notification_sink = InMemoryNotificationSink()

    dedup_service = DeduplicationService(
        store, store, audit_sink, notification_sink, settings=settings
    )
    recon_service = ReconciliationService(
        store, store, audit_sink, notification_sink, findings=store, settings=settings
    )
    return create_app(dedup_service, recon_service)


def main() -> None:
    parser = argparse.ArgumentParser(description="Record matching & reconciliation API")
    parser.add_argument("--host", default="127.0.0.1", help="Interface to bind")
    parser.add_argument("--port", type=int, default=8000, help="Port to run the server on")
    args = parser.parse_args()

    settings = get_settings()
    setup_logging(settings)
    logger.info("Starting server", host=args.host, port=args.port, env=settings.app_env)

    uvicorn.run(
        build_app(),
        host=args.host,
        port=args.port,
        log_level=settings.app_log_level.lower(),
    )


if __name__ == "__main__":
    main()
