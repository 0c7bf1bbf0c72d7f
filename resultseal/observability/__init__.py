"""
Result Seal Observability

Logging and metrics infrastructure.
"""

import logging
import logging.handlers
import json
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Generator, List, Optional, Tuple


# Structured logging formatter
class JSONFormatter(logging.Formatter):
    """JSON log formatter for structured logging."""

    EXTRA_FIELDS = ("identity", "task", "attempt", "error_code")

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).replace(tzinfo=None).isoformat() + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        for name in self.EXTRA_FIELDS:
            if hasattr(record, name):
                log_data[name] = getattr(record, name)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data)


def setup_logging(
    level: str = "INFO",
    json_format: bool = True,
    log_file: Optional[str] = None,
) -> None:
    """
    Configure application logging.

    Args:
        level: Log level
        json_format: Use JSON formatting
        log_file: Optional log file path
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    # Clear existing handlers
    root_logger.handlers.clear()

    if json_format:
        formatter = JSONFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=5,
        )
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)


SeriesKey = Tuple[str, Tuple[Tuple[str, str], ...]]


def _series_key(name: str, labels: Optional[Dict[str, str]]) -> SeriesKey:
    return name, tuple(sorted((labels or {}).items()))


def _render(name: str, labels: Tuple[Tuple[str, str], ...]) -> str:
    if not labels:
        return name
    rendered = ",".join(f'{k}="{v}"' for k, v in labels)
    return f"{name}{{{rendered}}}"


class MetricsCollector:
    """
    Process-wide counters, gauges and duration summaries.

    Exported in the Prometheus text format so a node exporter textfile
    collector can pick up the numbers of short-lived CLI runs.
    """

    def __init__(self):
        self.enabled = True
        self._counters: Dict[SeriesKey, float] = {}
        self._gauges: Dict[SeriesKey, float] = {}
        self._durations: Dict[SeriesKey, List[float]] = {}

    def counter_inc(
        self,
        name: str,
        value: float = 1.0,
        labels: Optional[Dict[str, str]] = None,
    ) -> None:
        if not self.enabled:
            return
        key = _series_key(name, labels)
        self._counters[key] = self._counters.get(key, 0.0) + value

    def gauge_set(
        self,
        name: str,
        value: float,
        labels: Optional[Dict[str, str]] = None,
    ) -> None:
        if not self.enabled:
            return
        self._gauges[_series_key(name, labels)] = value

    @contextmanager
    def timer(
        self,
        name: str,
        labels: Optional[Dict[str, str]] = None,
    ) -> Generator[None, None, None]:
        """Record the wall time of the enclosed block, also when it raises."""
        start = time.perf_counter()
        try:
            yield
        finally:
            if self.enabled:
                key = _series_key(name, labels)
                self._durations.setdefault(key, []).append(time.perf_counter() - start)

    def get_counter(self, name: str, labels: Optional[Dict[str, str]] = None) -> float:
        return self._counters.get(_series_key(name, labels), 0.0)

    def get_gauge(self, name: str, labels: Optional[Dict[str, str]] = None) -> Optional[float]:
        return self._gauges.get(_series_key(name, labels))

    def get_durations(self, name: str, labels: Optional[Dict[str, str]] = None) -> List[float]:
        return list(self._durations.get(_series_key(name, labels), []))

    def reset(self) -> None:
        self._counters.clear()
        self._gauges.clear()
        self._durations.clear()

    def export_prometheus(self) -> str:
        """Render every series in the Prometheus text exposition format."""
        lines: List[str] = []
        typed = set()

        def type_line(name: str, kind: str) -> None:
            if name not in typed:
                typed.add(name)
                lines.append(f"# TYPE {name} {kind}")

        for (name, labels), value in sorted(self._counters.items()):
            type_line(name, "counter")
            lines.append(f"{_render(name, labels)} {value}")

        for (name, labels), value in sorted(self._gauges.items()):
            type_line(name, "gauge")
            lines.append(f"{_render(name, labels)} {value}")

        for (name, labels), samples in sorted(self._durations.items()):
            type_line(name, "summary")
            lines.append(f"{_render(name + '_count', labels)} {len(samples)}")
            lines.append(f"{_render(name + '_sum', labels)} {sum(samples)}")

        return "\n".join(lines) + "\n" if lines else ""

    def write_textfile(self, path: str) -> None:
        """Write the export atomically for a textfile collector."""
        target = Path(path)
        tmp = target.with_name(target.name + ".tmp")
        tmp.write_text(self.export_prometheus())
        tmp.replace(target)


# Global instance
_metrics = MetricsCollector()


def get_metrics() -> MetricsCollector:
    """Get global metrics collector."""
    return _metrics


class SealMetrics:
    """Pre-defined metrics for signing and verification."""

    @staticmethod
    def credential_fetch_attempt(outcome: str) -> None:
        """Record one credential fetch attempt."""
        _metrics.counter_inc(
            "resultseal_credential_fetch_attempts_total",
            labels={"outcome": outcome},
        )

    @staticmethod
    def credential_ttl(seconds: float) -> None:
        """Record remaining lifetime of the held credential."""
        _metrics.gauge_set("resultseal_credential_ttl_seconds", seconds)

    @staticmethod
    def fields_signed(count: int) -> None:
        _metrics.counter_inc("resultseal_fields_signed_total", value=count)

    @staticmethod
    def results_verified(outcome: str) -> None:
        """Record a field set verification outcome (ok or an error code)."""
        _metrics.counter_inc(
            "resultseal_results_verified_total",
            labels={"outcome": outcome},
        )

    @staticmethod
    def status_chain_checked(outcome: str) -> None:
        """Record a status chain verification outcome (ok or an error code)."""
        _metrics.counter_inc(
            "resultseal_status_chain_checks_total",
            labels={"outcome": outcome},
        )

    @staticmethod
    def timed(operation: str):
        """Time one sign or verify operation."""
        return _metrics.timer(
            "resultseal_operation_seconds",
            labels={"operation": operation},
        )


__all__ = [
    "JSONFormatter",
    "setup_logging",
    "MetricsCollector",
    "get_metrics",
    "SealMetrics",
]
