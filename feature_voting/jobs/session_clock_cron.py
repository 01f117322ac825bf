"""
Session Clock Job: periodic reconciliation of ``VotingSession.is_active``.

The flag is a cache of "now is within [start_date, end_date]". Requests
correct it whenever they load a session; this job keeps sessions nobody is
looking at in line too.

Typical cron schedule: */10 * * * * (every 10 minutes), or run with
``--forever`` to loop on ``SESSION_CLOCK_INTERVAL_MINUTES``.
"""

import asyncio
import logging
import traceback
from datetime import datetime, timezone
from typing import Any

import httpx
from sqlalchemy.ext.asyncio import async_sessionmaker

from ..core.config import get_settings
from ..core.database import build_engine
from ..services.session_clock import SessionClock

logger = logging.getLogger(__name__)


# =============================================================================
# ALERTING
# =============================================================================


async def send_alert(
    title: str,
    message: str,
    severity: str = "error",
    details: dict | None = None,
    webhook_url: str | None = None,
) -> None:
    """
    Send an alert when the job fails.

    Always logs; also posts to ``ALERT_WEBHOOK_URL`` when configured.
    """
    log_message = f"[CRON ALERT] {title}: {message}"
    if details:
        log_message += f" | Details: {details}"

    if severity == "critical":
        logger.critical(log_message)
    else:
        logger.error(log_message)

    webhook_url = webhook_url or get_settings().alert_webhook_url
    if webhook_url:
        try:
            await _send_webhook_alert(webhook_url, title, message, severity, details)
        except httpx.HTTPError as e:
            logger.error(f"Failed to send webhook alert: {e}")


async def _send_webhook_alert(
    webhook_url: str,
    title: str,
    message: str,
    severity: str,
    details: dict | None,
) -> None:
    """Send alert to a generic webhook endpoint."""
    payload = {
        "title": title,
        "message": message,
        "severity": severity,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "source": "feature-voting-cron",
        "details": details or {},
    }

    async with httpx.AsyncClient() as client:
        response = await client.post(webhook_url, json=payload, timeout=10)
        response.raise_for_status()


# =============================================================================
# JOB
# =============================================================================


async def run_session_clock_job(database_url: str) -> dict[str, Any]:
    """
    Reconcile every stored session once.

    Safe to run concurrently with requests and with other runs: each writes
    the same value derived from the dates.

    Args:
        database_url: Async SQLAlchemy connection string

    Returns:
        Job result summary
    """
    start_time = datetime.now(timezone.utc)
    logger.info(f"Starting session clock job at {start_time.isoformat()}")

    engine = build_engine(database_url)
    session_factory = async_sessionmaker(engine, expire_on_commit=False)

    results: dict[str, Any] = {
        "started_at": start_time.isoformat(),
        "completed_at": None,
        "corrected": 0,
    }

    try:
        async with session_factory() as session:
            async with session.begin():
                results["corrected"] = await SessionClock(session).reconcile_all()
    except Exception as e:
        logger.error(f"Session clock job failed: {e}")
        await send_alert(
            title="Session Clock Job Failed",
            message="Reconciling voting session status crashed.",
            severity="critical",
            details={
                "error": str(e),
                "traceback": traceback.format_exc()[-500:],
                "started_at": results["started_at"],
            },
        )
        raise
    finally:
        await engine.dispose()

    end_time = datetime.now(timezone.utc)
    results["completed_at"] = end_time.isoformat()
    results["duration_seconds"] = (end_time - start_time).total_seconds()

    logger.info(
        f"Session clock job completed in {results['duration_seconds']:.2f}s: "
        f"{results['corrected']} sessions corrected"
    )
    return results


async def run_forever(database_url: str, interval_minutes: int) -> None:
    """Run the job every ``interval_minutes`` until cancelled.

    A failed run is alerted on and the loop carries on with the next tick.
    """
    while True:
        try:
            await run_session_clock_job(database_url)
        except Exception as e:
            logger.error(f"Session clock run failed, retrying next tick: {e}")
        await asyncio.sleep(interval_minutes * 60)


# =============================================================================
# CLI ENTRY POINT
# =============================================================================


def main():
    """CLI entry point for the session clock job."""
    import argparse

    settings = get_settings()
    parser = argparse.ArgumentParser(description="Reconcile voting session status")
    parser.add_argument(
        "--database-url",
        default=settings.database_url_async,
        help="Database connection string",
    )
    parser.add_argument(
        "--forever",
        action="store_true",
        help="Keep running, once per SESSION_CLOCK_INTERVAL_MINUTES",
    )
    args = parser.parse_args()

    # Configure logging
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        if args.forever:
            asyncio.run(run_forever(args.database_url, settings.session_clock_interval_minutes))
        else:
            results = asyncio.run(run_session_clock_job(args.database_url))
            print(f"Job completed: {results}")
    except KeyboardInterrupt:
        logger.info("Session clock job stopped")
    except Exception as e:
        print(f"Job failed: {e}")
        raise SystemExit(1) from e


if __name__ == "__main__":
    main()
