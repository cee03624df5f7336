from __future__ import annotations

import asyncio
import contextlib
import json
import signal
import sys
from pathlib import Path
from typing import Optional

import typer
from loguru import logger

from .audit import InMemoryAuditStore, PostgresAuditStore
from .config import PublisherSettings, get_settings
from .delivery import InMemoryTransport, PublishCoordinator, PublishResult, SqsTransport
from .errors import PublishFailedError
from .models import RequestSource, UnifiedItem
from .service import ItemPublishingService
from .utils import iter_ndjson, new_trace_id

app = typer.Typer(help="item-publisher operational CLI")

LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | trace={extra[trace_id]} | {message}"


def configure_logging(level: str) -> None:
    logger.remove()
    logger.configure(extra={"trace_id": "-"})
    logger.add(sys.stderr, level=level.upper(), format=LOG_FORMAT)


def result_to_json(result: PublishResult, trace_id: str) -> dict:
    return {
        "trace_id": trace_id,
        "success": result.success,
        "total": result.total,
        "successful": result.successful_count,
        "failed": result.failed_count,
        "cancelled": result.cancelled,
        "error": result.error_message,
        "failures": [
            {"id": f.entry.id, "key": f.entry.key, "code": f.code, "message": f.message}
            for f in result.failures
        ],
    }


async def _run_publish(
    settings: PublisherSettings,
    items: list[UnifiedItem],
    *,
    queue_url: Optional[str],
    trace_id: str,
    dry_run: bool,
    audit_dsn: Optional[str],
) -> PublishResult:
    if dry_run:
        transport = InMemoryTransport()
    else:
        transport = SqsTransport(
            queue_url,
            region_name=settings.AWS_REGION,
            endpoint_url=settings.AWS_ENDPOINT_URL,
        )

    cancel = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(sig, cancel.set)

    async with contextlib.AsyncExitStack() as stack:
        if audit_dsn:
            audit = PostgresAuditStore(audit_dsn, pool_max=settings.AUDIT_POOL_MAX)
            await stack.enter_async_context(audit)
            await audit.ensure_schema()
        else:
            audit = InMemoryAuditStore()

        coordinator = PublishCoordinator.from_settings(
            settings, transport, audit, request_source=RequestSource.UNKNOWN
        )
        service = ItemPublishingService(coordinator, audit, request_source=RequestSource.UNKNOWN)
        try:
            return await service.publish_items(items, trace_id, cancel=cancel)
        except PublishFailedError as e:
            return e.result


@app.command("publish")
def publish(
    file: Path = typer.Argument(..., exists=True, dir_okay=False, help="NDJSON file of unified items"),
    queue_url: Optional[str] = typer.Option(None, "--queue-url", help="Target SQS queue URL"),
    trace_id: Optional[str] = typer.Option(None, "--trace-id", help="Correlation id (generated if omitted)"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Deliver to an in-memory transport"),
    audit_dsn: Optional[str] = typer.Option(None, "--audit-dsn", help="PostgreSQL DSN for the audit log"),
    log_level: str = typer.Option("INFO", "--log-level"),
):
    """Publish items from an NDJSON file and print the JSON result."""
    configure_logging(log_level)
    settings = get_settings()

    queue_url = queue_url or settings.SQS_QUEUE_URL
    if not dry_run and not queue_url:
        raise typer.BadParameter("--queue-url (or ITEM_PUBLISHER_SQS_QUEUE_URL) is required")

    try:
        items = [UnifiedItem.model_validate(row) for row in iter_ndjson(file)]
    except ValueError as e:
        logger.error(f"Invalid input: {e}")
        raise typer.Exit(code=2)

    trace_id = trace_id or new_trace_id()
    result = asyncio.run(
        _run_publish(
            settings,
            items,
            queue_url=queue_url,
            trace_id=trace_id,
            dry_run=dry_run,
            audit_dsn=audit_dsn or settings.AUDIT_DATABASE_URL,
        )
    )
    typer.echo(json.dumps(result_to_json(result, trace_id), indent=2))
    if not result.success:
        raise typer.Exit(code=1)


@app.command("config")
def show_config():
    """Print the effective settings."""
    typer.echo(json.dumps(get_settings().model_dump(), indent=2, default=str))


if __name__ == "__main__":
    app()
