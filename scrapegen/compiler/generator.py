"""
Scrape config generation for PodMonitor resources.

ConfigGenerator composes the namespace resolver, the relabel compiler, the
discovery builder and the credential builders into one ScrapeConfig per
declared endpoint. Compilation is all-or-nothing per monitor: the first
error aborts the monitor and is re-raised with its namespace, name and
endpoint index attached.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Iterable, Optional

from .auth import AuthBuilder
from .config import ClientArguments
from .discovery import POD_ROLE, build_sd_config
from .errors import CompileError, ValidationError
from .models import Endpoint, HTTPClientConfig, PodMonitor, ScrapeConfig
from .relabel import compile_metric_relabelings, compile_relabelings
from .secrets import SecretResolver

logger = logging.getLogger(__name__)

DEFAULT_SCRAPE_INTERVAL = "1m"
DEFAULT_SCRAPE_TIMEOUT = "10s"
DEFAULT_METRICS_PATH = "/metrics"
DEFAULT_SCHEME = "http"

DURATION_PATTERN = re.compile(
    r"^(?:(\d+)y)?(?:(\d+)w)?(?:(\d+)d)?(?:(\d+)h)?(?:(\d+)m)?(?:(\d+)s)?(?:(\d+)ms)?$"
)
DURATION_UNITS = [365 * 86400, 7 * 86400, 86400, 3600, 60, 1, 0.001]


def parse_duration_to_seconds(duration: str) -> float:
    """
    Parse a Prometheus duration string (e.g. 1m, 1h30m, 500ms) to seconds.

    Raises:
        ValueError: If the string is not a valid duration
    """
    match = DURATION_PATTERN.match(duration)
    if not duration or match is None:
        raise ValueError(f"not a valid duration string: {duration!r}")
    return sum(int(v) * unit for v, unit in zip(match.groups(), DURATION_UNITS) if v)


def job_name(role: str, namespace: str, name: str, index: int) -> str:
    return f"{role}/{namespace}/{name}/{index}"


def _duration(value: Optional[str], default: str, field: str) -> tuple[str, float]:
    value = default if value is None else value
    try:
        seconds = parse_duration_to_seconds(value)
    except ValueError as e:
        raise ValidationError(str(e), field=field) from e
    if seconds <= 0:
        raise ValidationError(f"duration must be positive, got {value!r}", field=field)
    return value, seconds


class ConfigGenerator:
    """
    Compiles PodMonitors into scrape configs.

    Example:
        >>> generator = ConfigGenerator()
        >>> for cfg in generator.generate(monitor):
        ...     print(cfg.job_name)
    """

    def __init__(
        self,
        client: Optional[ClientArguments] = None,
        secrets: Optional[SecretResolver] = None,
    ):
        """
        Initialize the generator.

        Args:
            client: Cluster connection used in discovery configs (default: in-cluster)
            secrets: Credential resolver (default: no accessor, default mount root)
        """
        self.client = client or ClientArguments()
        self.secrets = secrets or SecretResolver()
        self.auth = AuthBuilder(self.secrets)

    def generate(self, monitor: PodMonitor) -> list[ScrapeConfig]:
        """
        Compile every endpoint of a monitor.

        Returns:
            One ScrapeConfig per endpoint, in declaration order

        Raises:
            CompileError: If any endpoint fails; no partial list is returned
        """
        configs = [
            self.generate_pod_monitor_config(monitor, endpoint, i)
            for i, endpoint in enumerate(monitor.spec.pod_metrics_endpoints)
        ]
        logger.debug(f"Compiled {len(configs)} scrape config(s) for podmonitor {monitor.key}")
        return configs

    def generate_pod_monitor_config(self, monitor: PodMonitor, endpoint: Endpoint, index: int) -> ScrapeConfig:
        """Compile one endpoint of a monitor."""
        try:
            return self._generate(monitor, endpoint, index)
        except CompileError as e:
            raise e.with_context(
                namespace=monitor.namespace,
                name=monitor.name,
                endpoint_index=index,
            ) from e

    def _generate(self, monitor: PodMonitor, endpoint: Endpoint, index: int) -> ScrapeConfig:
        namespace = monitor.namespace
        spec = monitor.spec

        interval, interval_seconds = _duration(endpoint.interval, DEFAULT_SCRAPE_INTERVAL, "interval")
        timeout, timeout_seconds = _duration(endpoint.scrape_timeout, DEFAULT_SCRAPE_TIMEOUT, "scrapeTimeout")
        if timeout_seconds > interval_seconds:
            raise ValidationError(
                f"scrape timeout {timeout} exceeds scrape interval {interval}",
                field="scrapeTimeout",
            )

        scheme = DEFAULT_SCHEME if endpoint.scheme is None else endpoint.scheme.lower()
        if scheme not in ("http", "https"):
            raise ValidationError(f"invalid scheme {endpoint.scheme!r}, must be http or https", field="scheme")

        return ScrapeConfig(
            job_name=job_name(POD_ROLE, namespace, monitor.name, index),
            honor_labels=bool(endpoint.honor_labels),
            honor_timestamps=endpoint.honor_timestamps is not False,
            params={k: list(v) for k, v in endpoint.params.items()},
            scrape_interval=interval,
            scrape_timeout=timeout,
            metrics_path=DEFAULT_METRICS_PATH if endpoint.path is None else endpoint.path,
            scheme=scheme,
            sample_limit=spec.sample_limit,
            target_limit=spec.target_limit,
            label_limit=spec.label_limit,
            label_name_length_limit=spec.label_name_length_limit,
            label_value_length_limit=spec.label_value_length_limit,
            http_client_config=self._http_client_config(namespace, endpoint),
            relabel_configs=compile_relabelings(monitor, endpoint),
            metric_relabel_configs=compile_metric_relabelings(endpoint),
            service_discovery_configs=[
                build_sd_config(
                    self.client,
                    spec.namespace_selector,
                    namespace,
                    POD_ROLE,
                    spec.attach_metadata,
                ),
            ],
        )

    def _http_client_config(self, namespace: str, endpoint: Endpoint) -> HTTPClientConfig:
        configured = [
            name for name, value in (
                ("basicAuth", endpoint.basic_auth),
                ("oauth2", endpoint.oauth2),
                ("authorization", endpoint.authorization),
                ("bearerTokenSecret", endpoint.bearer_token_secret),
            ) if value is not None
        ]
        if len(configured) > 1:
            raise ValidationError(
                f"at most one of {', '.join(configured)} may be configured",
                field=configured[1],
            )

        cfg = HTTPClientConfig(
            follow_redirects=endpoint.follow_redirects is not False,
            enable_http2=endpoint.enable_http2 is not False,
            proxy_url=endpoint.proxy_url or None,
        )
        if endpoint.tls_config is not None:
            cfg.tls_config = self.auth.generate_safe_tls(namespace, endpoint.tls_config)
        cfg.basic_auth = self.auth.generate_basic_auth(namespace, endpoint.basic_auth)
        cfg.oauth2 = self.auth.generate_oauth2(namespace, endpoint.oauth2)
        cfg.authorization = self.auth.generate_safe_authorization(namespace, endpoint.authorization)
        cfg.bearer_token_file = self.auth.generate_bearer_token_file(namespace, endpoint.bearer_token_secret)
        return cfg


@dataclass
class CompileReport:
    """Outcome of compiling many monitors independently."""

    configs: dict[str, list[ScrapeConfig]] = field(default_factory=dict)
    errors: dict[str, CompileError] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.errors

    def scrape_configs(self) -> list[ScrapeConfig]:
        """All compiled configs, ordered by monitor key then endpoint index."""
        return [cfg for key in sorted(self.configs) for cfg in self.configs[key]]


def compile_monitors(generator: ConfigGenerator, monitors: Iterable[PodMonitor]) -> CompileReport:
    """Compile monitors one by one; a failing monitor never affects the others."""
    report = CompileReport()
    for monitor in monitors:
        try:
            report.configs[monitor.key] = generator.generate(monitor)
        except CompileError as e:
            logger.warning(f"Failed to compile podmonitor {monitor.key}: {e}")
            report.errors[monitor.key] = e
    return report
