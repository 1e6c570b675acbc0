"""
Data models for the PodMonitor compiler.

This module defines the input structures (PodMonitor and its endpoints,
selectors and credential references) and the output structures handed to the
scrape engine (ScrapeConfig, SDConfig, HTTPClientConfig and friends).

Optional input fields are None when unset. None is the presence marker: a
field explicitly set to its default value still counts as set.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union

import yaml


SECRET_PLACEHOLDER = "<secret>"


class SecretKind(Enum):
    """Storage kind a credential reference points into."""

    SECRET = "secret"
    CONFIG_MAP = "configmap"


@dataclass(frozen=True)
class SecretOrConfigMap:
    """
    A key inside either a Secret or a ConfigMap of the monitor's namespace.

    Attributes:
        kind: Which store the key lives in
        name: Name of the Secret or ConfigMap
        key: Key inside its data
    """

    kind: SecretKind
    name: str
    key: str


@dataclass(frozen=True)
class SecretKeySelector:
    """A key inside a Secret of the monitor's namespace."""

    name: str
    key: str

    def to_reference(self) -> SecretOrConfigMap:
        return SecretOrConfigMap(SecretKind.SECRET, self.name, self.key)


# =============================================================================
# Input model
# =============================================================================


@dataclass(frozen=True)
class RelabelRule:
    """
    A relabel_config entry.

    Every field may be None, meaning unset; unset fields are filled in by
    relabel.with_defaults rather than carrying literal defaults here.
    """

    source_labels: Optional[tuple[str, ...]] = None
    separator: Optional[str] = None
    target_label: Optional[str] = None
    regex: Optional[str] = None
    modulus: Optional[int] = None
    replacement: Optional[str] = None
    action: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to the Prometheus relabel_config representation."""
        config: dict[str, Any] = {}
        if self.source_labels:
            config["source_labels"] = list(self.source_labels)
        if self.separator is not None:
            config["separator"] = self.separator
        if self.target_label:
            config["target_label"] = self.target_label
        if self.regex is not None:
            config["regex"] = self.regex
        if self.modulus:
            config["modulus"] = self.modulus
        if self.replacement is not None:
            config["replacement"] = self.replacement
        if self.action is not None:
            config["action"] = self.action
        return config


@dataclass
class NamespaceSelector:
    """Namespaces a monitor selects pods from."""

    any: bool = False
    match_names: list[str] = field(default_factory=list)


@dataclass
class LabelSelectorRequirement:
    """A single match expression of a label selector."""

    key: str
    operator: str
    values: list[str] = field(default_factory=list)


@dataclass
class LabelSelector:
    """Kubernetes label selector (matchLabels + matchExpressions)."""

    match_labels: dict[str, str] = field(default_factory=dict)
    match_expressions: list[LabelSelectorRequirement] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not self.match_labels and not self.match_expressions

    def matches(self, labels: dict[str, str]) -> bool:
        """Check whether a label set satisfies this selector."""
        for key, value in self.match_labels.items():
            if labels.get(key) != value:
                return False
        for expr in self.match_expressions:
            present = expr.key in labels
            if expr.operator == "In":
                if not present or labels[expr.key] not in expr.values:
                    return False
            elif expr.operator == "NotIn":
                if present and labels[expr.key] in expr.values:
                    return False
            elif expr.operator == "Exists":
                if not present:
                    return False
            elif expr.operator == "DoesNotExist":
                if present:
                    return False
            else:
                return False
        return True


@dataclass
class SafeTLSConfig:
    """TLS settings of an endpoint, referencing credentials indirectly."""

    ca: Optional[SecretOrConfigMap] = None
    cert: Optional[SecretOrConfigMap] = None
    key_secret: Optional[SecretKeySelector] = None
    server_name: Optional[str] = None
    insecure_skip_verify: bool = False


@dataclass
class OAuth2:
    """OAuth2 client credentials settings of an endpoint."""

    client_id: SecretOrConfigMap
    client_secret: SecretKeySelector
    token_url: str
    scopes: list[str] = field(default_factory=list)
    endpoint_params: dict[str, str] = field(default_factory=dict)


@dataclass
class SafeAuthorization:
    """Authorization header settings of an endpoint."""

    type: Optional[str] = None
    credentials: Optional[SecretKeySelector] = None


@dataclass
class BasicAuthRef:
    """Basic auth settings of an endpoint."""

    username: SecretKeySelector
    password: SecretKeySelector


@dataclass
class AttachMetadata:
    """Extra discovery metadata to attach to targets."""

    node: Optional[bool] = None


@dataclass
class Endpoint:
    """
    One scrapeable port/path combination of a PodMonitor.

    A string port selects the container port by name, an integer port
    selects it by number.
    """

    port: Optional[Union[str, int]] = None
    path: Optional[str] = None
    scheme: Optional[str] = None
    params: dict[str, list[str]] = field(default_factory=dict)
    interval: Optional[str] = None
    scrape_timeout: Optional[str] = None
    honor_labels: Optional[bool] = None
    honor_timestamps: Optional[bool] = None
    follow_redirects: Optional[bool] = None
    enable_http2: Optional[bool] = None
    filter_running: Optional[bool] = None
    proxy_url: Optional[str] = None
    tls_config: Optional[SafeTLSConfig] = None
    basic_auth: Optional[BasicAuthRef] = None
    bearer_token_secret: Optional[SecretKeySelector] = None
    oauth2: Optional[OAuth2] = None
    authorization: Optional[SafeAuthorization] = None
    relabelings: list[RelabelRule] = field(default_factory=list)
    metric_relabelings: list[RelabelRule] = field(default_factory=list)

    @property
    def port_label(self) -> Optional[str]:
        """Value of the `endpoint` label for targets of this endpoint."""
        if self.port is None:
            return None
        return str(self.port)


@dataclass
class PodMonitorSpec:
    """Spec section of a PodMonitor."""

    namespace_selector: NamespaceSelector = field(default_factory=NamespaceSelector)
    selector: Optional[LabelSelector] = None
    pod_target_labels: list[str] = field(default_factory=list)
    job_label: Optional[str] = None
    pod_metrics_endpoints: list[Endpoint] = field(default_factory=list)
    sample_limit: Optional[int] = None
    target_limit: Optional[int] = None
    label_limit: Optional[int] = None
    label_name_length_limit: Optional[int] = None
    label_value_length_limit: Optional[int] = None
    attach_metadata: Optional[AttachMetadata] = None


@dataclass
class PodMonitor:
    """A PodMonitor resource."""

    namespace: str
    name: str
    labels: dict[str, str] = field(default_factory=dict)
    spec: PodMonitorSpec = field(default_factory=PodMonitorSpec)

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"


# =============================================================================
# Output model
# =============================================================================


@dataclass
class BasicAuth:
    """Resolved basic auth block."""

    username: str = ""
    password: Optional[str] = None
    password_file: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        config: dict[str, Any] = {"username": self.username}
        if self.password is not None:
            config["password"] = SECRET_PLACEHOLDER
        if self.password_file is not None:
            config["password_file"] = self.password_file
        return config


@dataclass
class Authorization:
    """Resolved authorization header block."""

    type: str = "Bearer"
    credentials: Optional[str] = None
    credentials_file: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        config: dict[str, Any] = {"type": self.type}
        if self.credentials is not None:
            config["credentials"] = SECRET_PLACEHOLDER
        if self.credentials_file is not None:
            config["credentials_file"] = self.credentials_file
        return config


@dataclass
class OAuth2Config:
    """Resolved OAuth2 block."""

    client_id: str
    client_secret_file: str
    token_url: str
    scopes: list[str] = field(default_factory=list)
    endpoint_params: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        config: dict[str, Any] = {
            "client_id": self.client_id,
            "client_secret_file": self.client_secret_file,
            "token_url": self.token_url,
        }
        if self.scopes:
            config["scopes"] = list(self.scopes)
        if self.endpoint_params:
            config["endpoint_params"] = dict(sorted(self.endpoint_params.items()))
        return config


@dataclass
class TLSConfig:
    """Resolved TLS block; certificate material is only ever referenced by path."""

    ca_file: Optional[str] = None
    cert_file: Optional[str] = None
    key_file: Optional[str] = None
    server_name: Optional[str] = None
    insecure_skip_verify: bool = False

    def is_empty(self) -> bool:
        return self == TLSConfig()

    def to_dict(self) -> dict[str, Any]:
        config: dict[str, Any] = {}
        if self.ca_file:
            config["ca_file"] = self.ca_file
        if self.cert_file:
            config["cert_file"] = self.cert_file
        if self.key_file:
            config["key_file"] = self.key_file
        if self.server_name:
            config["server_name"] = self.server_name
        config["insecure_skip_verify"] = self.insecure_skip_verify
        return config


@dataclass
class HTTPClientConfig:
    """Resolved HTTP client settings used for scraping or API access."""

    basic_auth: Optional[BasicAuth] = None
    authorization: Optional[Authorization] = None
    oauth2: Optional[OAuth2Config] = None
    bearer_token: Optional[str] = None
    bearer_token_file: Optional[str] = None
    tls_config: TLSConfig = field(default_factory=TLSConfig)
    proxy_url: Optional[str] = None
    follow_redirects: bool = True
    enable_http2: bool = True

    def to_dict(self) -> dict[str, Any]:
        """Convert to the inlined Prometheus http client representation."""
        config: dict[str, Any] = {}
        if self.basic_auth is not None:
            config["basic_auth"] = self.basic_auth.to_dict()
        if self.authorization is not None:
            config["authorization"] = self.authorization.to_dict()
        if self.oauth2 is not None:
            config["oauth2"] = self.oauth2.to_dict()
        if self.bearer_token is not None:
            config["bearer_token"] = SECRET_PLACEHOLDER
        if self.bearer_token_file is not None:
            config["bearer_token_file"] = self.bearer_token_file
        if not self.tls_config.is_empty():
            config["tls_config"] = self.tls_config.to_dict()
        if self.proxy_url:
            config["proxy_url"] = self.proxy_url
        config["follow_redirects"] = self.follow_redirects
        config["enable_http2"] = self.enable_http2
        return config


@dataclass
class SDConfig:
    """
    A kubernetes_sd_config entry.

    An empty namespace list means all namespaces. When neither kubeconfig_file
    nor api_server is set the consumer falls back to in-cluster credentials.
    """

    role: str
    namespaces: list[str] = field(default_factory=list)
    kubeconfig_file: Optional[str] = None
    api_server: Optional[str] = None
    http_client_config: HTTPClientConfig = field(default_factory=HTTPClientConfig)
    attach_metadata_node: Optional[bool] = None

    def to_dict(self) -> dict[str, Any]:
        config: dict[str, Any] = {"role": self.role}
        if self.kubeconfig_file:
            config["kubeconfig_file"] = self.kubeconfig_file
        if self.api_server:
            config["api_server"] = self.api_server
            config.update(self.http_client_config.to_dict())
        if self.namespaces:
            config["namespaces"] = {"names": list(self.namespaces)}
        if self.attach_metadata_node is not None:
            config["attach_metadata"] = {"node": self.attach_metadata_node}
        return config


@dataclass
class ScrapeConfig:
    """A fully resolved Prometheus scrape configuration for one endpoint."""

    job_name: str
    honor_labels: bool = False
    honor_timestamps: bool = True
    params: dict[str, list[str]] = field(default_factory=dict)
    scrape_interval: str = "1m"
    scrape_timeout: str = "10s"
    metrics_path: str = "/metrics"
    scheme: str = "http"
    sample_limit: Optional[int] = None
    target_limit: Optional[int] = None
    label_limit: Optional[int] = None
    label_name_length_limit: Optional[int] = None
    label_value_length_limit: Optional[int] = None
    http_client_config: HTTPClientConfig = field(default_factory=HTTPClientConfig)
    relabel_configs: list[RelabelRule] = field(default_factory=list)
    metric_relabel_configs: list[RelabelRule] = field(default_factory=list)
    service_discovery_configs: list[SDConfig] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the Prometheus scrape_config representation."""
        config: dict[str, Any] = {
            "job_name": self.job_name,
            "honor_labels": self.honor_labels,
            "honor_timestamps": self.honor_timestamps,
        }
        if self.params:
            config["params"] = {k: list(v) for k, v in sorted(self.params.items())}
        config["scrape_interval"] = self.scrape_interval
        config["scrape_timeout"] = self.scrape_timeout
        config["metrics_path"] = self.metrics_path
        config["scheme"] = self.scheme
        for limit in (
            "sample_limit",
            "target_limit",
            "label_limit",
            "label_name_length_limit",
            "label_value_length_limit",
        ):
            value = getattr(self, limit)
            if value is not None:
                config[limit] = value
        config.update(self.http_client_config.to_dict())
        config["kubernetes_sd_configs"] = [sd.to_dict() for sd in self.service_discovery_configs]
        if self.relabel_configs:
            config["relabel_configs"] = [r.to_dict() for r in self.relabel_configs]
        if self.metric_relabel_configs:
            config["metric_relabel_configs"] = [r.to_dict() for r in self.metric_relabel_configs]
        return config

    def to_yaml(self) -> str:
        """Convert to YAML string."""
        return yaml.dump(self.to_dict(), default_flow_style=False, sort_keys=False)


def scrape_configs_to_yaml(configs: list[ScrapeConfig]) -> str:
    """Render a list of scrape configs as a `scrape_configs:` document."""
    document = {"scrape_configs": [c.to_dict() for c in configs]}
    return yaml.dump(document, default_flow_style=False, sort_keys=False)
