"""
Operator alerting for ingestion failures that need a human.

Channels, in order:
1. Structured log line (always), at ERROR or CRITICAL
2. ALERT_WEBHOOK_URL (Discord/Slack compatible `{"content": ...}` post)
3. Sentry message for critical alerts when SENTRY_DSN is configured

Each (type, scope) pair has a cooldown held in Redis (SET NX EX); when Redis
is unreachable a process-local table takes over.
"""
import logging
import time
from dataclasses import dataclass, field
from typing import Optional

logger = logging.getLogger(__name__)

ALERT_COOLDOWN_SECONDS = 300

ALERT_COOLDOWN_OVERRIDES: dict[str, int] = {
    "unsigned_webhooks_enabled": 3600,
}

COOLDOWN_KEY_PREFIX = "hookgate:alert_cooldown"

_local_cooldowns: dict[str, float] = {}  # cooldown key -> monotonic expiry


class AlertType:
    WEBHOOK_RETRIES_EXHAUSTED = "webhook_retries_exhausted"
    CRITICAL_EVENT_FAILED = "critical_event_failed"
    SECRET_DECRYPTION_FAILED = "secret_decryption_failed"
    UNSIGNED_WEBHOOKS_ENABLED = "unsigned_webhooks_enabled"


@dataclass(frozen=True)
class Alert:
    alert_type: str
    message: str
    severity: str = "error"
    correlation_id: Optional[str] = None
    extra: dict = field(default_factory=dict)

    @property
    def is_critical(self) -> bool:
        return self.severity == "critical"

    def render(self) -> str:
        lines = [f"[{self.severity.upper()}] **{self.alert_type}**", self.message]
        if self.correlation_id:
            lines.append(f"`correlation_id: {self.correlation_id}`")
        lines.extend(f"`{key}: {val}`" for key, val in self.extra.items())
        return "\n".join(lines)


def _get_cooldown_seconds(alert_type: str) -> int:
    return ALERT_COOLDOWN_OVERRIDES.get(alert_type, ALERT_COOLDOWN_SECONDS)


async def send_alert(
    alert_type: str,
    message: str,
    correlation_id: Optional[str] = None,
    severity: str = "error",
    extra: Optional[dict] = None,
    cooldown_scope: Optional[str] = None,
) -> bool:
    """
    Deliver an alert to every configured channel.
    `cooldown_scope` (usually the endpoint) keeps one noisy endpoint from
    muting the same alert for the others. Returns False when suppressed.
    """
    cooldown_key = f"{alert_type}:{cooldown_scope}" if cooldown_scope else alert_type
    if not await _acquire_cooldown(cooldown_key, _get_cooldown_seconds(alert_type)):
        logger.debug("Alert %s suppressed by cooldown", cooldown_key)
        return False

    from hookgate.utils.logging import get_correlation_id
    alert = Alert(
        alert_type=alert_type,
        message=message,
        severity=severity,
        correlation_id=correlation_id or get_correlation_id(),
        extra=dict(extra or {}),
    )

    logger.log(
        logging.CRITICAL if alert.is_critical else logging.ERROR,
        "ALERT [%s]: %s", alert.alert_type, alert.message,
        extra={k: v for k, v in alert.extra.items() if k in ("endpoint", "job_id", "webhook_id")},
    )
    await _send_webhook_alert(alert)
    if alert.is_critical:
        _capture_in_sentry(alert)
    return True


async def _acquire_cooldown(key: str, cooldown: int) -> bool:
    """Atomic check-and-set. True when the alert may go out."""
    try:
        from hookgate.utils.redis_client import get_redis
        redis = await get_redis()
        return bool(await redis.set(f"{COOLDOWN_KEY_PREFIX}:{key}", "1", nx=True, ex=cooldown))
    except Exception as e:
        logger.debug("Alert cooldown Redis check failed, using in-memory fallback: %s", str(e))

    now = time.monotonic()
    if now < _local_cooldowns.get(key, 0):
        return False
    _local_cooldowns[key] = now + cooldown
    return True


async def _send_webhook_alert(alert: Alert) -> None:
    try:
        from hookgate.config import get_settings
        webhook_url = get_settings().alert_webhook_url
        if not webhook_url:
            return

        import httpx
        async with httpx.AsyncClient(timeout=5.0) as client:
            await client.post(webhook_url, json={"content": alert.render()})
    except Exception as e:
        logger.warning("Failed to send webhook alert %s: %s", alert.alert_type, str(e))


def _capture_in_sentry(alert: Alert) -> None:
    try:
        from hookgate.config import get_settings
        if not get_settings().sentry_dsn:
            return

        import sentry_sdk
        with sentry_sdk.new_scope() as scope:
            scope.set_tag("alert_type", alert.alert_type)
            if alert.correlation_id:
                scope.set_tag("correlation_id", alert.correlation_id)
            for key, val in alert.extra.items():
                scope.set_extra(key, val)
            sentry_sdk.capture_message(alert.message, level="fatal")
    except Exception as e:
        logger.warning("Failed to report alert %s to Sentry: %s", alert.alert_type, str(e))
