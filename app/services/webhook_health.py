from __future__ import annotations

import datetime as dt
import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.db import as_utc, utcnow
from app.exceptions import StorageError
from app.models.webhook_config import WebhookConfig
from app.models.webhook_event import WebhookEvent

logger = logging.getLogger(__name__)

TIME_RANGES = {
    "1h": dt.timedelta(hours=1),
    "6h": dt.timedelta(hours=6),
    "12h": dt.timedelta(hours=12),
    "24h": dt.timedelta(hours=24),
    "7d": dt.timedelta(days=7),
    "30d": dt.timedelta(days=30),
}
DEFAULT_TIME_RANGE = "24h"

DEGRADED_BELOW = 90.0
UNHEALTHY_BELOW = 50.0

RECENT_EVENTS_LIMIT = 10
RECENT_ERRORS_LIMIT = 5
QUEUE_WINDOW = dt.timedelta(hours=1)


def parse_time_range(time_range: Optional[str]) -> dt.timedelta:
    """Unknown tokens fall back to 24h."""
    return TIME_RANGES.get(time_range or DEFAULT_TIME_RANGE, TIME_RANGES[DEFAULT_TIME_RANGE])


def success_rate(successful: int, total: int) -> float:
    """Percentage in [0, 100]; 0 when there is nothing to measure."""
    if total <= 0:
        return 0.0
    return round(successful / total * 100, 2)


def derive_health_status(rate: float, active: bool, total_events: int) -> str:
    """healthy < degraded < unhealthy, later checks override earlier ones.

    An active webhook with no events in the window has nothing to be judged
    on and stays healthy.
    """
    status = "healthy"
    measured = total_events > 0
    if measured and rate < DEGRADED_BELOW:
        status = "degraded"
    if (measured and rate < UNHEALTHY_BELOW) or not active:
        status = "unhealthy"
    return status


def compute_event_statistics(events: Sequence[WebhookEvent]) -> Dict[str, Any]:
    total = len(events)
    successful = sum(1 for e in events if e.success)
    pending = sum(1 for e in events if not e.processed)

    processing_times = [
        (as_utc(e.processed_at) - as_utc(e.created_at)).total_seconds() * 1000
        for e in events
        if e.processed_at is not None and e.created_at is not None
    ]
    avg_processing = sum(processing_times) / len(processing_times) if processing_times else 0

    return {
        "total_events": total,
        "successful_events": successful,
        "failed_events": total - successful,
        "pending_events": pending,
        "success_rate": success_rate(successful, total),
        "average_processing_time_ms": round(avg_processing),
    }


def calculate_overall_stats(statuses: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Roll per-webhook results up.

    Processing time is the plain mean of the per-webhook averages, not
    weighted by event count.
    """
    total_webhooks = len(statuses)
    active_webhooks = sum(1 for s in statuses if s.get("active"))
    healthy_webhooks = sum(1 for s in statuses if s.get("health_status") == "healthy")

    stats = [s.get("statistics") or {} for s in statuses]
    total_events = sum(s.get("total_events", 0) for s in stats)
    successful_events = sum(s.get("successful_events", 0) for s in stats)
    failed_events = sum(s.get("failed_events", 0) for s in stats)
    processing_sum = sum(s.get("average_processing_time_ms", 0) for s in stats)

    return {
        "total_webhooks": total_webhooks,
        "active_webhooks": active_webhooks,
        "healthy_webhooks": healthy_webhooks,
        "health_percentage": round(healthy_webhooks / total_webhooks * 100) if total_webhooks else 0,
        "total_events_processed": total_events,
        "successful_events": successful_events,
        "failed_events": failed_events,
        "success_rate": success_rate(successful_events, total_events),
        "average_processing_time_ms": round(processing_sum / total_webhooks) if total_webhooks else 0,
    }


def calculate_queue_stats(events: Iterable[WebhookEvent]) -> Dict[str, int]:
    """Approximate queue depth from the event log.

    ``processing`` is always 0: the log has no in-flight state. A real broker's
    own counters should replace this once one exists.
    """
    events = list(events)
    return {
        "pending": sum(1 for e in events if not e.processed),
        "processing": 0,
        "completed": sum(1 for e in events if e.processed and e.success),
        "failed": sum(1 for e in events if e.processed and not e.success),
        "total": len(events),
    }


def empty_overall_stats() -> Dict[str, Any]:
    return calculate_overall_stats([])


def empty_queue_stats() -> Dict[str, int]:
    return calculate_queue_stats([])


def serialize_event(event: WebhookEvent) -> Dict[str, Any]:
    return {
        "id": str(event.id),
        "provider": event.provider,
        "event_type": event.event_type,
        "success": event.success,
        "processed": event.processed,
        "error_message": event.error_message,
        "created_at": _isoformat(event.created_at),
        "processed_at": _isoformat(event.processed_at),
    }


def _isoformat(value: Optional[dt.datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class WebhookStatusService:
    """Health and delivery statistics for a user's webhook configurations."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_status(
        self,
        user_id: str,
        provider: Optional[str] = None,
        time_range: Optional[str] = DEFAULT_TIME_RANGE,
    ) -> Dict[str, Any]:
        time_range = time_range if time_range in TIME_RANGES else DEFAULT_TIME_RANGE
        now = utcnow()
        window_start = now - parse_time_range(time_range)

        try:
            configs = await self._load_configs(user_id, provider)
            if not configs:
                return {
                    "success": True,
                    "message": "No webhook configurations found",
                    "webhooks": [],
                    "overall_stats": empty_overall_stats(),
                    "recent_events": [],
                    "queue_stats": empty_queue_stats(),
                    "time_range": time_range,
                    "generated_at": now.isoformat() + "Z",
                }

            statuses = [await self._webhook_status(config, window_start) for config in configs]
            providers = sorted({c.provider for c in configs})
            recent_events = await self._recent_events(providers)
            queue_events = await self._events_since(providers, now - QUEUE_WINDOW)
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to retrieve webhook status: {e}") from e

        return {
            "success": True,
            "webhooks": statuses,
            "overall_stats": calculate_overall_stats(statuses),
            "recent_events": [serialize_event(e) for e in recent_events],
            "queue_stats": calculate_queue_stats(queue_events),
            "time_range": time_range,
            "generated_at": now.isoformat() + "Z",
        }

    async def _load_configs(self, user_id: str, provider: Optional[str]) -> List[WebhookConfig]:
        stmt = select(WebhookConfig).where(WebhookConfig.user_id == user_id)
        if provider:
            stmt = stmt.where(WebhookConfig.provider == provider.lower())
        result = await self.session.execute(stmt.order_by(WebhookConfig.provider))
        return list(result.scalars().all())

    async def _webhook_status(self, config: WebhookConfig, window_start: dt.datetime) -> Dict[str, Any]:
        events = await self._events_since([config.provider], window_start)
        statistics = compute_event_statistics(events)

        latest = await self._recent_events([config.provider], limit=1)
        recent_errors = [e for e in events if not e.success][:RECENT_ERRORS_LIMIT]

        return {
            "id": str(config.id),
            "provider": config.provider,
            "events": config.events,
            "webhook_url": config.webhook_url,
            "active": config.active,
            "registration_status": config.registration_status,
            "external_webhook_id": config.external_webhook_id,
            "health_status": derive_health_status(
                statistics["success_rate"], config.active, statistics["total_events"]
            ),
            "statistics": statistics,
            "latest_event": serialize_event(latest[0]) if latest else None,
            "recent_errors": [
                {"error_message": e.error_message, "created_at": _isoformat(e.created_at)}
                for e in recent_errors
            ],
            "configuration": {
                "rate_limit": config.rate_limit,
                "timeout_ms": config.timeout_ms,
                "retry_attempts": config.retry_attempts,
                "ip_whitelist": config.ip_whitelist,
            },
            "created_at": _isoformat(config.created_at),
            "updated_at": _isoformat(config.updated_at),
        }

    async def _events_since(self, providers: List[str], since: dt.datetime) -> List[WebhookEvent]:
        """Events for *providers* created at or after *since*, newest first."""
        stmt = (
            select(WebhookEvent)
            .where(WebhookEvent.provider.in_(providers), WebhookEvent.created_at >= since)
            .order_by(WebhookEvent.created_at.desc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def _recent_events(self, providers: List[str], limit: int = RECENT_EVENTS_LIMIT) -> List[WebhookEvent]:
        stmt = (
            select(WebhookEvent)
            .where(WebhookEvent.provider.in_(providers))
            .order_by(WebhookEvent.created_at.desc())
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
