"""Alertmanager webhook receiver that measures end-to-end alerting latency.

Firing alerts that carry an ``alertname`` label and a ``time`` annotation
are measured as ``now - time`` and observed in a histogram. Each timestamp
is measured once; seen timestamps are purged after a lookback period.
"""

from __future__ import annotations

import json
import logging
import math
import threading
import time
from dataclasses import dataclass, field
from http import HTTPStatus
from typing import Any, Callable, Iterable, Mapping, Sequence

logger = logging.getLogger(__name__)

NAMESPACE = "e2ealerting"
RECEIVER_PATH = "/api/v1/receiver"
ALERT_NAME_LABEL = "alertname"
DEFAULT_BUCKETS = (5.0, 15.0, 30.0, 60.0, 90.0, 120.0, 240.0)


@dataclass
class ReceiverConfig:
    """Settings of the webhook receiver; durations are in seconds."""

    roundtrip_label: str = ""
    purge_lookback: float = 2 * 60 * 60
    purge_interval: float = 15 * 60


def parse_roundtrip_label(label: str) -> dict[str, str]:
    """Parse a ``name=value`` label; an empty string gives no label."""
    if not label:
        return {}
    parts = label.split("=")
    if len(parts) != 2:
        raise ValueError(
            "the label is not valid, it must have exactly one name and one value: "
            f"{parts} has {len(parts)} parts"
        )
    return {parts[0]: parts[1]}


@dataclass
class _Series:
    bucket_counts: list[int]
    count: int = 0
    total: float = 0.0


@dataclass
class Histogram:
    """A histogram with cumulative buckets, one series per label value tuple."""

    name: str
    help: str
    buckets: Sequence[float] = DEFAULT_BUCKETS
    label_names: Sequence[str] = ()
    const_labels: Mapping[str, str] = field(default_factory=dict)
    series: dict[tuple[str, ...], _Series] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.buckets = tuple(sorted(float(b) for b in self.buckets))
        self.label_names = tuple(self.label_names)
        self._lock = threading.Lock()

    def observe(self, labels: Sequence[str], value: float) -> None:
        """Record ``value`` in the series for the given label values."""
        key = tuple(labels)
        if len(key) != len(self.label_names):
            raise ValueError(
                f"expected {len(self.label_names)} label values, got {len(key)}"
            )
        with self._lock:
            entry = self.series.get(key)
            if entry is None:
                entry = _Series(bucket_counts=[0] * len(self.buckets))
                self.series[key] = entry
            for position, bound in enumerate(self.buckets):
                if value <= bound:
                    entry.bucket_counts[position] += 1
            entry.count += 1
            entry.total += value


def _parse_timestamp(text: Any) -> float:
    if not isinstance(text, str) or text != text.strip():
        raise ValueError(f"invalid timestamp {text!r}")
    value = float(text)
    if not math.isfinite(value):
        raise ValueError(f"invalid timestamp {text!r}")
    return value


class Receiver:
    """Receives Alertmanager webhooks and measures alert round-trip latency."""

    def __init__(self, config: ReceiverConfig | None = None) -> None:
        self.config = config or ReceiverConfig()
        const_labels = parse_roundtrip_label(self.config.roundtrip_label)

        self.timestamps: set[float] = set()
        self.evaluations_total = 0
        self.failed_evaluations_total = 0
        self.roundtrip_duration = Histogram(
            name=f"{NAMESPACE}_webhook_receiver_end_to_end_duration_seconds",
            help="Time spent (in seconds) from scraping a metric to receiving an alert.",
            buckets=DEFAULT_BUCKETS,
            label_names=(ALERT_NAME_LABEL,),
            const_labels=const_labels,
        )

        self._lock = threading.Lock()
        self._quit = threading.Event()
        self._thread: threading.Thread | None = None

    def _fail(self) -> None:
        with self._lock:
            self.failed_evaluations_total += 1

    def measure_latency(self, payload: bytes | str | Mapping[str, Any]) -> int:
        """Measure the firing alerts of a webhook payload.

        Returns the number of alerts measured. Raises ValueError if the
        payload is not a valid webhook message.
        """
        # Snapshot the time the moment the webhook arrives.
        current = time.time()

        try:
            data = json.loads(payload) if isinstance(payload, (bytes, str)) else payload
            if not isinstance(data, Mapping):
                raise ValueError("webhook payload is not an object")
            alerts: Iterable[Any] = data.get("alerts") or []
            if not isinstance(alerts, list):
                raise ValueError("alerts is not a list")
        except ValueError as exc:
            logger.error("unable to parse alerts: %s", exc)
            self._fail()
            raise ValueError(f"unable to parse alerts: {exc}") from exc

        measured = 0
        for alert in alerts:
            if not isinstance(alert, Mapping) or alert.get("status") != "firing":
                continue
            labels = alert.get("labels") or {}
            annotations = alert.get("annotations") or {}

            name = labels.get(ALERT_NAME_LABEL, "")
            if not name:
                logger.debug(
                    "alert does not have an alertname label - we can't measure it, labels=%s",
                    sorted(labels),
                )
                continue

            stamp = 0.0
            if "time" in annotations:
                try:
                    stamp = _parse_timestamp(annotations["time"])
                except ValueError:
                    logger.error("failed to parse the timestamp of the alert %s", name)
                    self._fail()

            if stamp == 0.0:
                logger.debug(
                    "alert does not have a `time` annotation - we can't measure it, labels=%s",
                    sorted(labels),
                )
                continue

            latency = int(current) - int(stamp)
            with self._lock:
                if stamp in self.timestamps:
                    logger.debug("timestamp %s previously evaluated, alert=%s", stamp, name)
                    continue
                self.timestamps.add(stamp)

            self.roundtrip_duration.observe((name,), float(latency))
            logger.info(
                "alert=%s time=%s duration_seconds=%s status=%s",
                name,
                int(stamp),
                latency,
                alert.get("status"),
            )
            with self._lock:
                self.evaluations_total += 1
            measured += 1

        return measured

    def purge_timestamps(self, now: float | None = None) -> int:
        """Forget timestamps older than the lookback period; return how many."""
        current = time.time() if now is None else now
        deadline = current - self.config.purge_lookback
        logger.info("purging timestamps, deadline=%s", deadline)
        with self._lock:
            expired = {t for t in self.timestamps if deadline > int(t)}
            self.timestamps -= expired
        logger.info("purging done, count=%d", len(expired))
        return len(expired)

    def _purge_loop(self) -> None:
        while not self._quit.wait(self.config.purge_interval):
            self.purge_timestamps()

    def start(self) -> None:
        """Start purging timestamps in the background."""
        if self._thread is not None:
            raise RuntimeError("receiver already started")
        self._quit.clear()
        self._thread = threading.Thread(target=self._purge_loop, daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """Stop the background purge and wait for it to finish."""
        self._quit.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None

    def wsgi_app(
        self, environ: Mapping[str, Any], start_response: Callable[..., Any]
    ) -> list[bytes]:
        """Serve the webhook endpoint as a WSGI application."""
        if environ.get("PATH_INFO", "") != RECEIVER_PATH:
            status = HTTPStatus.NOT_FOUND
        elif environ.get("REQUEST_METHOD", "GET").upper() != "POST":
            status = HTTPStatus.METHOD_NOT_ALLOWED
        else:
            try:
                length = int(environ.get("CONTENT_LENGTH") or 0)
            except ValueError:
                length = 0
            body = environ["wsgi.input"].read(length) if length > 0 else b""
            try:
                self.measure_latency(body)
                status = HTTPStatus.OK
            except ValueError:
                status = HTTPStatus.BAD_REQUEST

        start_response(
            f"{status.value} {status.phrase}", [("Content-Type", "text/plain")]
        )
        return [b""]