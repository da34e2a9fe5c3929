"""Exposes time gauges for scraping and keeps ruler and Alertmanager configuration in sync."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Mapping, Protocol

import yaml

from .client import ClientConfig, CortexClient
from .receiver import NAMESPACE

logger = logging.getLogger(__name__)

RULE_NAMESPACE = "e2ealerting"


class ConfigClient(Protocol):
    """What the runner needs from a Cortex client."""

    def create_alertmanager_config(
        self, config: str, templates: Mapping[str, str] | None = None
    ) -> None: ...

    def create_rule_group(self, namespace: str, rule_group: Mapping[str, Any]) -> None: ...


@dataclass
class RunnerConfig:
    """Where to sync configuration to; the sync interval is in seconds."""

    alertmanager_url: str = ""
    alertmanager_id: str = ""
    ruler_url: str = ""
    ruler_id: str = ""
    user: str = ""
    key: str = ""
    rules_config_file: str = ""
    alertmanager_config_file: str = ""
    config_sync_interval: float = 30 * 60


@dataclass(frozen=True)
class GaugeCase:
    """A gauge that reports the current Unix time when collected."""

    name: str
    help: str = (
        "Exposes the time of the scrape as its value to help measure end to end "
        "latency upon receiving an alert on it."
    )

    @property
    def metric_name(self) -> str:
        return f"{NAMESPACE}_{self.name}"

    def collect(self) -> dict[str, float]:
        """Return the gauge's metric name mapped to the current time in whole seconds."""
        return {self.metric_name: float(int(time.time()))}


def new_gauge_case(name: str) -> GaugeCase:
    """Create a gauge case exposing the time of the scrape."""
    return GaugeCase(name=name)


class Runner:
    """Holds cases for collection and syncs configuration with Cortex."""

    def __init__(
        self,
        config: RunnerConfig,
        alertmanager_client: ConfigClient,
        ruler_client: ConfigClient,
        alertmanager_config: str | None = None,
        ruler_config: Mapping[str, Any] | None = None,
    ) -> None:
        self.config = config
        self.alertmanager_client = alertmanager_client
        self.ruler_client = ruler_client
        self.alertmanager_config = alertmanager_config
        self.ruler_config: dict[str, Any] = dict(ruler_config or {})
        self.cases: list[GaugeCase] = []

        self._lock = threading.RLock()
        self._quit = threading.Event()
        self._thread: threading.Thread | None = None

    def add(self, case: GaugeCase) -> None:
        """Add a case to collect."""
        with self._lock:
            self.cases.append(case)

    def collect(self) -> dict[str, float]:
        """Collect the current values of all cases."""
        with self._lock:
            cases = list(self.cases)
        samples: dict[str, float] = {}
        for case in cases:
            samples.update(case.collect())
        return samples

    def _sync_ruler(self) -> None:
        try:
            self.ruler_client.create_rule_group(RULE_NAMESPACE, self.ruler_config)
        except Exception as exc:  # any failure is logged and retried next interval
            logger.error("failed to sync configuration with Ruler: %s", exc)
            return
        logger.info("sync with ruler complete")

    def _sync_alertmanager(self) -> None:
        try:
            self.alertmanager_client.create_alertmanager_config(
                self.alertmanager_config or "", {}
            )
        except Exception as exc:  # any failure is logged and retried next interval
            logger.error("failed to sync configuration with Alertmanager: %s", exc)
            return
        logger.info("sync with Alertmanager complete")

    def sync(self) -> None:
        """Push the rule group to the ruler, then the configuration to Alertmanager."""
        self._sync_ruler()
        self._sync_alertmanager()

    def _sync_loop(self) -> None:
        logger.info("starting sync with Alertmanager and ruler")
        self.sync()
        while not self._quit.wait(self.config.config_sync_interval):
            self.sync()

    def start(self) -> bool:
        """Start syncing in the background; return False if there is nothing to sync."""
        if self.alertmanager_config is None and not self.ruler_config.get("rules"):
            logger.info("no ruler or Alertmanager configuration - skipping sync")
            return False
        if self._thread is not None:
            raise RuntimeError("runner already started")
        self._quit.clear()
        self._thread = threading.Thread(target=self._sync_loop, daemon=True)
        self._thread.start()
        return True

    def stop(self) -> None:
        """Stop syncing and wait for the background thread."""
        self._quit.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None


def create_runner(config: RunnerConfig) -> Runner:
    """Build a runner with Cortex clients and configuration files loaded from disk."""
    alertmanager_client = CortexClient(
        ClientConfig(
            address=config.alertmanager_url,
            id=config.alertmanager_id,
            user=config.user,
            key=config.key,
        )
    )
    ruler_client = CortexClient(
        ClientConfig(
            address=config.ruler_url,
            id=config.ruler_id,
            user=config.user,
            key=config.key,
        )
    )

    alertmanager_config: str | None = None
    if config.alertmanager_config_file:
        try:
            with open(config.alertmanager_config_file, encoding="utf-8") as handle:
                alertmanager_config = handle.read()
        except OSError as exc:
            raise OSError(
                "unable to read Alertmanager configuration file "
                f"{config.alertmanager_config_file!r}: {exc}"
            ) from exc
        logger.info("alertmanager configuration loaded")

    ruler_config: dict[str, Any] = {}
    if config.rules_config_file:
        try:
            with open(config.rules_config_file, encoding="utf-8") as handle:
                text = handle.read()
        except OSError as exc:
            raise OSError(
                f"unable to read Rules configuration file {config.rules_config_file!r}: {exc}"
            ) from exc
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise ValueError(
                f"unable to load the Rules configuration file {config.rules_config_file!r}: {exc}"
            ) from exc
        if not isinstance(data, dict):
            raise ValueError(
                f"unable to load the Rules configuration file {config.rules_config_file!r}: "
                "expected a rule group mapping"
            )
        ruler_config = data
        logger.info("ruler configuration loaded")

    return Runner(
        config,
        alertmanager_client,
        ruler_client,
        alertmanager_config=alertmanager_config,
        ruler_config=ruler_config,
    )