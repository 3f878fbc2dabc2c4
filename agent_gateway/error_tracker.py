# agent_gateway/error_tracker.py
# Fehlererfassung: begrenzter Ring-Puffer (FIFO) mit Aggregation und Health-Urteil
from __future__ import annotations

import logging
import threading
import time
import traceback
import uuid
from collections import Counter, deque
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any

from . import config
from .errors import GatewayError
from .metrics import TRACKED_ERRORS_TOTAL
from .models import ErrorSummary, HealthStatus, HealthVerdict, TopError, TrackedError

logger = logging.getLogger(__name__)

# Synthetischer Provider für Fehler ohne Netzwerkbezug
GENERAL_PROVIDER = "general"

TOP_ERRORS_LIMIT = 5


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _generate_error_id() -> str:
    """Eindeutig innerhalb des Prozesses (Zeitstempel + Zufallssuffix), nicht kryptografisch."""
    return f"err_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


class ErrorTracker:
    """
    In-Memory-Fehlerspeicher für die Prozesslaufzeit.

    - Ring-Puffer (deque mit maxlen): älteste Einträge werden zuerst verdrängt
    - record() und clear() laufen unter einem Lock, da parallele Gateway-Aufrufe
      denselben Tracker teilen können
    - Kein globaler Singleton: jede Instanz wird explizit erzeugt und übergeben
    """

    def __init__(
        self,
        capacity: int = config.ERROR_TRACKER_CAPACITY,
        *,
        window_minutes: float = config.HEALTH_WINDOW_MINUTES,
        warning_threshold: int = config.HEALTH_WARNING_THRESHOLD,
        critical_threshold: int = config.HEALTH_CRITICAL_THRESHOLD,
        environment: str = config.ENVIRONMENT,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if capacity < 1:
            raise ValueError("capacity muss mindestens 1 sein")
        self._capacity = capacity
        self._errors: deque[TrackedError] = deque(maxlen=capacity)
        self._lock = threading.Lock()
        self._window_minutes = window_minutes
        self._warning_threshold = warning_threshold
        self._critical_threshold = critical_threshold
        self._environment = environment
        self._clock = clock

    @property
    def capacity(self) -> int:
        return self._capacity

    def __len__(self) -> int:
        return len(self._errors)

    def record(
        self,
        provider: str | None,
        error: BaseException | str,
        context: dict[str, Any] | None = None,
    ) -> str:
        """
        Fehler erfassen und sofort loggen. Schlägt nie fehl.
        Returns: generierte Fehler-ID
        """
        now = self._clock()
        error_id = _generate_error_id()
        provider_name = provider or GENERAL_PROVIDER

        code: str | None = None
        http_status: int | None = None
        stack_trace: str | None = None
        if isinstance(error, GatewayError):
            code = error.code
            http_status = error.status_code
            message = error.message
        elif isinstance(error, BaseException):
            code = type(error).__name__
            message = str(error) or type(error).__name__
        else:
            message = str(error)
        if isinstance(error, BaseException) and error.__traceback__ is not None:
            stack_trace = "".join(
                traceback.format_exception(type(error), error, error.__traceback__)
            )

        merged_context: dict[str, Any] = {
            "timestamp": now.isoformat(),
            "environment": self._environment,
        }
        if isinstance(error, GatewayError) and error.detail:
            merged_context["detail"] = error.detail
        merged_context.update(context or {})

        tracked = TrackedError(
            id=error_id,
            timestamp=now,
            provider=provider_name,
            code=code,
            http_status=http_status,
            message=message,
            stack_trace=stack_trace,
            context=merged_context,
        )
        with self._lock:
            self._errors.append(tracked)

        TRACKED_ERRORS_TOTAL.labels(provider=provider_name, code=code or "unknown").inc()
        logger.error(
            "[GATEWAY_ERROR] id=%s provider=%s message=%s", error_id, provider_name, message
        )
        return error_id

    def track_error(self, error: BaseException | str, context: dict[str, Any] | None = None) -> str:
        """Allgemeinen Fehler (ohne Provider) erfassen."""
        return self.record(GENERAL_PROVIDER, error, context)

    def all(self) -> list[TrackedError]:
        """Alle Einträge, neueste zuerst."""
        with self._lock:
            return list(reversed(self._errors))

    def by_provider(self, provider: str) -> list[TrackedError]:
        return [e for e in self.all() if e.provider == provider]

    def latest_for(self, provider: str) -> TrackedError | None:
        for error in self.all():
            if error.provider == provider:
                return error
        return None

    def recent_since(self, minutes: float) -> list[TrackedError]:
        """Alle Einträge mit timestamp > jetzt - minutes."""
        cutoff = self._clock() - timedelta(minutes=minutes)
        return [e for e in self.all() if e.timestamp > cutoff]

    def stats_by_provider(self) -> dict[str, int]:
        """Fehler pro Provider, ohne den synthetischen 'general'-Provider."""
        counts = Counter(
            e.provider for e in self.all() if e.provider and e.provider != GENERAL_PROVIDER
        )
        return dict(counts)

    def health_verdict(self) -> HealthVerdict:
        """
        critical: >= 5 Fehler im Fenster (5 Minuten)
        warning:  2–4 Fehler
        healthy:  sonst
        """
        recent = len(self.recent_since(self._window_minutes))
        total = len(self._errors)

        status = HealthStatus.HEALTHY
        if recent >= self._critical_threshold:
            status = HealthStatus.CRITICAL
        elif recent >= self._warning_threshold:
            status = HealthStatus.WARNING

        if recent == 0:
            detail = "Keine aktuellen Fehler"
        else:
            detail = f"{recent} Fehler in den letzten {self._window_minutes:g} Minuten"

        return HealthVerdict(status=status, recent_count=recent, total_count=total, detail=detail)

    def summary(self) -> ErrorSummary:
        """Gesamtzahl, jüngste Fehler, Fehler pro Provider und die 5 häufigsten Meldungen."""
        errors = self.all()
        grouped: dict[str, TopError] = {}
        for error in errors:
            entry = grouped.get(error.message)
            if entry is None:
                grouped[error.message] = TopError(
                    message=error.message, count=1, last_seen=error.timestamp
                )
            else:
                entry.count += 1
                if error.timestamp > entry.last_seen:
                    entry.last_seen = error.timestamp

        top = sorted(grouped.values(), key=lambda t: t.count, reverse=True)[:TOP_ERRORS_LIMIT]
        return ErrorSummary(
            total_errors=len(errors),
            recent_errors=len(self.recent_since(config.SUMMARY_RECENT_MINUTES)),
            provider_errors=self.stats_by_provider(),
            top_errors=top,
        )

    def log_summary(self) -> None:
        summary = self.summary()
        logger.info(
            "[GATEWAY_ERROR_SUMMARY] total=%d recent=%d providers=%s",
            summary.total_errors, summary.recent_errors, summary.provider_errors,
        )

    def clear(self) -> None:
        """Puffer leeren (nur auf explizite Operator-Aktion)."""
        with self._lock:
            self._errors.clear()
        logger.info("ErrorTracker geleert")
