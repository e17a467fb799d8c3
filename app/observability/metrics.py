from __future__ import annotations

import logging
import secrets
from typing import Any

from app.config import settings

logger = logging.getLogger("app.metrics")


class MetricsReporter:
    """Lightweight metrics emitter that writes structured log events."""

    def __init__(
        self,
        *,
        namespace: str | None = None,
        disabled: bool | None = None,
        sample_rate: float | None = None,
    ) -> None:
        self._disabled = settings.metrics_disable if disabled is None else disabled
        self._namespace = namespace or settings.metrics_namespace or "listener"
        rate = settings.metrics_sample_rate if sample_rate is None else sample_rate
        self._sample_rate = max(0.0, min(rate, 1.0))

    def timing(self, metric: str, value_ms: float, *, tags: dict[str, Any] | None = None) -> None:
        self._emit("timing", metric, value_ms, tags=tags)

    def gauge(self, metric: str, value: float, *, tags: dict[str, Any] | None = None) -> None:
        self._emit("gauge", metric, value, tags=tags)

    def increment(
        self, metric: str, value: float = 1.0, *, tags: dict[str, Any] | None = None
    ) -> None:
        self._emit("counter", metric, value, tags=tags)

    def alert(
        self,
        metric: str,
        *,
        value: float,
        threshold: float,
        severity: str,
        tags: dict[str, Any] | None = None,
    ) -> None:
        """Emit a structured alert payload when a scan crosses an error threshold."""
        if self._disabled:
            return
        payload = {
            "metric": self._normalize_metric(metric),
            "value": round(float(value), 4),
            "threshold": round(float(threshold), 4),
            "severity": severity,
            "tags": tags or {},
        }
        self._log_event(f"{self._namespace}.alert", payload)

    def _emit(
        self, metric_type: str, metric: str, value: float, *, tags: dict[str, Any] | None
    ) -> None:
        if self._disabled or value is None:
            return
        sampled = metric_type != "gauge" and self._sample_rate < 1.0
        if sampled:
            roll = secrets.randbelow(1_000_000) / 1_000_000
            if roll > self._sample_rate:
                return
        payload = {
            "metric": self._normalize_metric(metric),
            "value": round(float(value), 4),
            "type": metric_type,
            "tags": tags or {},
        }
        if sampled:
            payload["sample_rate"] = round(self._sample_rate, 4)
        self._log_event(f"{self._namespace}.metric", payload)

    def _normalize_metric(self, metric: str) -> str:
        trimmed = (metric or "").strip()
        if trimmed.startswith(f"{self._namespace}."):
            return trimmed
        return f"{self._namespace}.{trimmed}" if trimmed else self._namespace

    def _log_event(self, event: str, payload: dict[str, Any]) -> None:
        logger.info(event, extra={"metrics": payload})


metrics = MetricsReporter()
