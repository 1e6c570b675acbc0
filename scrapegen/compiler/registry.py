"""
Installed scrape config bookkeeping.

ScrapeConfigRegistry holds the scrape configs currently handed to the scrape
engine, keyed by monitor. A monitor's configs are replaced wholesale on a
successful compilation; on failure the previously installed configs stay in
effect and the error is recorded on the monitor's status.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from .errors import CompileError
from .generator import ConfigGenerator
from .models import PodMonitor, ScrapeConfig, scrape_configs_to_yaml

logger = logging.getLogger(__name__)


class ApplyResult(Enum):
    """Outcome of applying a monitor to the registry."""

    UPDATED = "updated"
    UNCHANGED = "unchanged"
    FAILED = "failed"


@dataclass
class MonitorStatus:
    """
    Reconcile status of one monitor.

    Attributes:
        namespace: Monitor namespace
        name: Monitor name
        last_reconcile: When the monitor was last compiled
        reconcile_error: Error of the last compilation, if it failed
    """

    namespace: str
    name: str
    last_reconcile: Optional[datetime] = None
    reconcile_error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "namespace": self.namespace,
            "name": self.name,
            "last_reconcile": self.last_reconcile.isoformat() if self.last_reconcile else None,
            "reconcile_error": self.reconcile_error,
        }


class ScrapeConfigRegistry:
    """Last-known-good scrape configs per monitor."""

    def __init__(self, generator: ConfigGenerator):
        self.generator = generator
        self._configs: dict[str, list[ScrapeConfig]] = {}
        self._status: dict[str, MonitorStatus] = {}

    def apply(self, monitor: PodMonitor) -> ApplyResult:
        """Compile a monitor and install its configs if compilation succeeds."""
        status = self._status.setdefault(monitor.key, MonitorStatus(monitor.namespace, monitor.name))
        status.last_reconcile = datetime.now(timezone.utc)

        try:
            configs = self.generator.generate(monitor)
        except CompileError as e:
            status.reconcile_error = str(e)
            if monitor.key in self._configs:
                logger.error(f"Keeping previous scrape configs for {monitor.key}: {e}")
            else:
                logger.error(f"No scrape configs installed for {monitor.key}: {e}")
            return ApplyResult.FAILED

        status.reconcile_error = None
        if self._configs.get(monitor.key) == configs:
            logger.debug(f"Scrape configs for {monitor.key} unchanged")
            return ApplyResult.UNCHANGED

        self._configs[monitor.key] = configs
        logger.info(f"Installed {len(configs)} scrape config(s) for {monitor.key}")
        return ApplyResult.UPDATED

    def remove(self, namespace: str, name: str) -> bool:
        """Forget a deleted monitor. Returns whether anything was installed."""
        key = f"{namespace}/{name}"
        self._status.pop(key, None)
        return self._configs.pop(key, None) is not None

    def get(self, namespace: str, name: str) -> list[ScrapeConfig]:
        return list(self._configs.get(f"{namespace}/{name}", []))

    def scrape_configs(self) -> list[ScrapeConfig]:
        """All installed configs, ordered by monitor key then endpoint index."""
        return [cfg for key in sorted(self._configs) for cfg in self._configs[key]]

    def statuses(self) -> list[MonitorStatus]:
        return [self._status[key] for key in sorted(self._status)]

    def to_yaml(self) -> str:
        return scrape_configs_to_yaml(self.scrape_configs())
