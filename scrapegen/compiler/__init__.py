"""
PodMonitor to Prometheus scrape config compiler.

This package turns PodMonitor resources into scrape configs:
- Namespace resolution (namespaces.py)
- Secret and ConfigMap reference resolution (secrets.py)
- TLS, OAuth2, authorization and basic auth blocks (auth.py)
- Relabel rule chains (relabel.py)
- Kubernetes service discovery configs (discovery.py)
- Per-endpoint scrape config assembly (generator.py)
- Settings, manifests and installed config bookkeeping (config.py, manifest.py, registry.py)
"""

from .config import ClientArguments, CompilerSettings, load_settings
from .errors import (
    CompileError,
    ConfigValidationError,
    SecretResolutionError,
    UnsupportedFeatureError,
    ValidationError,
)
from .generator import CompileReport, ConfigGenerator, compile_monitors
from .manifest import load_pod_monitors, pod_monitor_from_dict
from .models import (
    Endpoint,
    LabelSelector,
    NamespaceSelector,
    PodMonitor,
    PodMonitorSpec,
    RelabelRule,
    ScrapeConfig,
    SDConfig,
)
from .namespaces import resolve_namespaces
from .registry import ApplyResult, ScrapeConfigRegistry
from .relabel import sanitize_label_name, with_defaults
from .secrets import (
    KubernetesSecretAccessor,
    SecretAccessor,
    SecretResolver,
    StaticSecretAccessor,
)

__all__ = [
    # Settings
    "ClientArguments",
    "CompilerSettings",
    "load_settings",
    # Errors
    "CompileError",
    "ConfigValidationError",
    "SecretResolutionError",
    "UnsupportedFeatureError",
    "ValidationError",
    # Generation
    "CompileReport",
    "ConfigGenerator",
    "compile_monitors",
    "resolve_namespaces",
    "sanitize_label_name",
    "with_defaults",
    # Manifests
    "load_pod_monitors",
    "pod_monitor_from_dict",
    # Models
    "Endpoint",
    "LabelSelector",
    "NamespaceSelector",
    "PodMonitor",
    "PodMonitorSpec",
    "RelabelRule",
    "ScrapeConfig",
    "SDConfig",
    # Registry
    "ApplyResult",
    "ScrapeConfigRegistry",
    # Secrets
    "KubernetesSecretAccessor",
    "SecretAccessor",
    "SecretResolver",
    "StaticSecretAccessor",
]
