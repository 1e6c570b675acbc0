"""
PodMonitor manifest loading.

Parses monitoring.coreos.com/v1 PodMonitor objects (as produced by
`kubectl get podmonitors -o yaml`) into the compiler's data model. Manifests
are validated against a JSON schema covering the fields the compiler reads;
unknown fields are ignored the way the API server's structural schema would
prune them.
"""

import logging
from pathlib import Path
from typing import Any, Iterator, Optional

import yaml
from jsonschema import Draft7Validator

from .errors import CompileError, ConfigValidationError, ValidationError
from .models import (
    AttachMetadata,
    BasicAuthRef,
    Endpoint,
    LabelSelector,
    LabelSelectorRequirement,
    NamespaceSelector,
    OAuth2,
    PodMonitor,
    PodMonitorSpec,
    RelabelRule,
    SafeAuthorization,
    SafeTLSConfig,
    SecretKeySelector,
    SecretKind,
    SecretOrConfigMap,
)

logger = logging.getLogger(__name__)

POD_MONITOR_KIND = "PodMonitor"
DEFAULT_NAMESPACE = "default"

_KEY_SELECTOR = {
    "type": "object",
    "required": ["name", "key"],
    "properties": {
        "name": {"type": "string"},
        "key": {"type": "string"},
        "optional": {"type": "boolean"}
    }
}

_NON_NEGATIVE = {"type": "integer", "minimum": 0}

# JSON Schema for the PodMonitor fields the compiler reads
POD_MONITOR_SCHEMA = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "definitions": {
        "keySelector": _KEY_SELECTOR,
        "secretOrConfigMap": {
            "type": "object",
            "properties": {
                "secret": {"$ref": "#/definitions/keySelector"},
                "configMap": {"$ref": "#/definitions/keySelector"}
            }
        },
        "relabelConfig": {
            "type": "object",
            "properties": {
                "sourceLabels": {"type": "array", "items": {"type": "string"}},
                "separator": {"type": "string"},
                "targetLabel": {"type": "string"},
                "regex": {"type": "string"},
                "modulus": {"type": "integer", "minimum": 0},
                "replacement": {"type": "string"},
                "action": {"type": "string"}
            }
        },
        "endpoint": {
            "type": "object",
            "properties": {
                "port": {"type": "string"},
                "targetPort": {"type": ["integer", "string"]},
                "path": {"type": "string"},
                "scheme": {"type": "string"},
                "params": {
                    "type": "object",
                    "additionalProperties": {"type": "array", "items": {"type": "string"}}
                },
                "interval": {"type": "string"},
                "scrapeTimeout": {"type": "string"},
                "honorLabels": {"type": "boolean"},
                "honorTimestamps": {"type": "boolean"},
                "followRedirects": {"type": "boolean"},
                "enableHttp2": {"type": "boolean"},
                "filterRunning": {"type": "boolean"},
                "proxyUrl": {"type": "string"},
                "tlsConfig": {
                    "type": "object",
                    "properties": {
                        "ca": {"$ref": "#/definitions/secretOrConfigMap"},
                        "cert": {"$ref": "#/definitions/secretOrConfigMap"},
                        "keySecret": {"$ref": "#/definitions/keySelector"},
                        "serverName": {"type": "string"},
                        "insecureSkipVerify": {"type": "boolean"}
                    }
                },
                "basicAuth": {
                    "type": "object",
                    "required": ["username", "password"],
                    "properties": {
                        "username": {"$ref": "#/definitions/keySelector"},
                        "password": {"$ref": "#/definitions/keySelector"}
                    }
                },
                "bearerTokenSecret": {"$ref": "#/definitions/keySelector"},
                "oauth2": {
                    "type": "object",
                    "required": ["clientId", "clientSecret", "tokenUrl"],
                    "properties": {
                        "clientId": {"$ref": "#/definitions/secretOrConfigMap"},
                        "clientSecret": {"$ref": "#/definitions/keySelector"},
                        "tokenUrl": {"type": "string", "minLength": 1},
                        "scopes": {"type": "array", "items": {"type": "string"}},
                        "endpointParams": {
                            "type": "object",
                            "additionalProperties": {"type": "string"}
                        }
                    }
                },
                "authorization": {
                    "type": "object",
                    "properties": {
                        "type": {"type": "string"},
                        "credentials": {"$ref": "#/definitions/keySelector"}
                    }
                },
                "relabelings": {"type": "array", "items": {"$ref": "#/definitions/relabelConfig"}},
                "metricRelabelings": {"type": "array", "items": {"$ref": "#/definitions/relabelConfig"}}
            }
        }
    },
    "type": "object",
    "required": ["kind", "metadata"],
    "properties": {
        "apiVersion": {"type": "string"},
        "kind": {"const": POD_MONITOR_KIND},
        "metadata": {
            "type": "object",
            "required": ["name"],
            "properties": {
                "name": {"type": "string", "minLength": 1},
                "namespace": {"type": "string", "minLength": 1},
                "labels": {"type": "object", "additionalProperties": {"type": "string"}}
            }
        },
        "spec": {
            "type": "object",
            "properties": {
                "namespaceSelector": {
                    "type": "object",
                    "properties": {
                        "any": {"type": "boolean"},
                        "matchNames": {"type": "array", "items": {"type": "string"}}
                    }
                },
                "selector": {
                    "type": "object",
                    "properties": {
                        "matchLabels": {
                            "type": "object",
                            "additionalProperties": {"type": "string"}
                        },
                        "matchExpressions": {
                            "type": "array",
                            "items": {
                                "type": "object",
                                "required": ["key", "operator"],
                                "properties": {
                                    "key": {"type": "string"},
                                    "operator": {"type": "string"},
                                    "values": {"type": "array", "items": {"type": "string"}}
                                }
                            }
                        }
                    }
                },
                "podTargetLabels": {"type": "array", "items": {"type": "string"}},
                "jobLabel": {"type": "string"},
                "podMetricsEndpoints": {"type": "array", "items": {"$ref": "#/definitions/endpoint"}},
                "sampleLimit": _NON_NEGATIVE,
                "targetLimit": _NON_NEGATIVE,
                "labelLimit": _NON_NEGATIVE,
                "labelNameLengthLimit": _NON_NEGATIVE,
                "labelValueLengthLimit": _NON_NEGATIVE,
                "attachMetadata": {
                    "type": "object",
                    "properties": {"node": {"type": "boolean"}}
                }
            }
        }
    }
}


def validate_manifest(data: dict[str, Any]) -> list[str]:
    """
    Validate a PodMonitor manifest against the schema.

    Returns:
        List of validation error messages (empty if valid)
    """
    validator = Draft7Validator(POD_MONITOR_SCHEMA)
    errors = []
    for error in sorted(validator.iter_errors(data), key=lambda e: list(map(str, e.path))):
        path = ".".join(str(p) for p in error.path) if error.path else "root"
        errors.append(f"{path}: {error.message}")
    return errors


def _key_selector(data: Optional[dict[str, Any]]) -> Optional[SecretKeySelector]:
    if data is None:
        return None
    return SecretKeySelector(name=data["name"], key=data["key"])


def _secret_or_config_map(data: Optional[dict[str, Any]], field: str) -> Optional[SecretOrConfigMap]:
    if data is None:
        return None
    secret = data.get("secret")
    config_map = data.get("configMap")
    if secret is not None and config_map is not None:
        raise ValidationError("only one of secret and configMap may be set", field=field)
    if secret is not None:
        return SecretOrConfigMap(SecretKind.SECRET, secret["name"], secret["key"])
    if config_map is not None:
        return SecretOrConfigMap(SecretKind.CONFIG_MAP, config_map["name"], config_map["key"])
    return None


def _relabel_rule(data: dict[str, Any]) -> RelabelRule:
    source_labels = data.get("sourceLabels")
    return RelabelRule(
        source_labels=tuple(source_labels) if source_labels is not None else None,
        separator=data.get("separator"),
        target_label=data.get("targetLabel"),
        regex=data.get("regex"),
        modulus=data.get("modulus"),
        replacement=data.get("replacement"),
        action=data.get("action"),
    )


def _endpoint(data: dict[str, Any], index: int) -> Endpoint:
    field = f"podMetricsEndpoints[{index}]"

    port = data.get("port")
    if not port and data.get("targetPort") is not None:
        port = data["targetPort"]

    tls = None
    tls_data = data.get("tlsConfig")
    if tls_data is not None:
        tls = SafeTLSConfig(
            ca=_secret_or_config_map(tls_data.get("ca"), f"{field}.tlsConfig.ca"),
            cert=_secret_or_config_map(tls_data.get("cert"), f"{field}.tlsConfig.cert"),
            key_secret=_key_selector(tls_data.get("keySecret")),
            server_name=tls_data.get("serverName"),
            insecure_skip_verify=tls_data.get("insecureSkipVerify", False),
        )

    oauth2 = None
    oauth2_data = data.get("oauth2")
    if oauth2_data is not None:
        client_id = _secret_or_config_map(oauth2_data["clientId"], f"{field}.oauth2.clientId")
        if client_id is None:
            raise ValidationError("oauth2 clientId requires a secret or configMap", field=f"{field}.oauth2.clientId")
        oauth2 = OAuth2(
            client_id=client_id,
            client_secret=_key_selector(oauth2_data["clientSecret"]),
            token_url=oauth2_data["tokenUrl"],
            scopes=list(oauth2_data.get("scopes", [])),
            endpoint_params=dict(oauth2_data.get("endpointParams", {})),
        )

    authorization = None
    auth_data = data.get("authorization")
    if auth_data is not None:
        authorization = SafeAuthorization(
            type=auth_data.get("type"),
            credentials=_key_selector(auth_data.get("credentials")),
        )

    basic_auth = None
    basic_data = data.get("basicAuth")
    if basic_data is not None:
        basic_auth = BasicAuthRef(
            username=_key_selector(basic_data["username"]),
            password=_key_selector(basic_data["password"]),
        )

    return Endpoint(
        port=port,
        path=data.get("path"),
        scheme=data.get("scheme"),
        params={k: list(v) for k, v in data.get("params", {}).items()},
        interval=data.get("interval"),
        scrape_timeout=data.get("scrapeTimeout"),
        honor_labels=data.get("honorLabels"),
        honor_timestamps=data.get("honorTimestamps"),
        follow_redirects=data.get("followRedirects"),
        enable_http2=data.get("enableHttp2"),
        filter_running=data.get("filterRunning"),
        proxy_url=data.get("proxyUrl"),
        tls_config=tls,
        basic_auth=basic_auth,
        bearer_token_secret=_key_selector(data.get("bearerTokenSecret")),
        oauth2=oauth2,
        authorization=authorization,
        relabelings=[_relabel_rule(r) for r in data.get("relabelings", [])],
        metric_relabelings=[_relabel_rule(r) for r in data.get("metricRelabelings", [])],
    )


def _identity(data: dict[str, Any]) -> tuple[str, str]:
    metadata = data.get("metadata")
    if not isinstance(metadata, dict):
        metadata = {}
    return metadata.get("namespace") or DEFAULT_NAMESPACE, metadata.get("name") or "<unnamed>"


def pod_monitor_from_dict(data: dict[str, Any], validate: bool = True) -> PodMonitor:
    """
    Create a PodMonitor from a manifest dictionary.

    Raises:
        ConfigValidationError: If schema validation fails
        ValidationError: If a credential reference is ambiguous; carries the
            monitor's namespace and name
    """
    namespace, name = _identity(data)
    if validate:
        errors = validate_manifest(data)
        if errors:
            raise ConfigValidationError(
                f"PodMonitor {namespace}/{name} failed validation with {len(errors)} error(s)",
                errors=errors,
            )

    try:
        return _pod_monitor(data)
    except CompileError as e:
        raise e.with_context(namespace=namespace, name=name) from e


def _pod_monitor(data: dict[str, Any]) -> PodMonitor:
    metadata = data["metadata"]
    spec_data = data.get("spec") or {}

    ns_data = spec_data.get("namespaceSelector", {})
    selector = None
    selector_data = spec_data.get("selector")
    if selector_data is not None:
        selector = LabelSelector(
            match_labels=dict(selector_data.get("matchLabels", {})),
            match_expressions=[
                LabelSelectorRequirement(
                    key=expr["key"],
                    operator=expr["operator"],
                    values=list(expr.get("values", [])),
                )
                for expr in selector_data.get("matchExpressions", [])
            ],
        )

    attach_metadata = None
    if "attachMetadata" in spec_data:
        attach_metadata = AttachMetadata(node=spec_data["attachMetadata"].get("node"))

    spec = PodMonitorSpec(
        namespace_selector=NamespaceSelector(
            any=ns_data.get("any", False),
            match_names=list(ns_data.get("matchNames", [])),
        ),
        selector=selector,
        pod_target_labels=list(spec_data.get("podTargetLabels", [])),
        job_label=spec_data.get("jobLabel"),
        pod_metrics_endpoints=[
            _endpoint(ep, i) for i, ep in enumerate(spec_data.get("podMetricsEndpoints", []))
        ],
        sample_limit=spec_data.get("sampleLimit"),
        target_limit=spec_data.get("targetLimit"),
        label_limit=spec_data.get("labelLimit"),
        label_name_length_limit=spec_data.get("labelNameLengthLimit"),
        label_value_length_limit=spec_data.get("labelValueLengthLimit"),
        attach_metadata=attach_metadata,
    )

    return PodMonitor(
        namespace=metadata.get("namespace", DEFAULT_NAMESPACE),
        name=metadata["name"],
        labels=dict(metadata.get("labels") or {}),
        spec=spec,
    )


def iter_manifest_documents(text: str) -> Iterator[dict[str, Any]]:
    """Yield every PodMonitor object in a (multi-document) YAML string, unwrapping Lists."""
    for document in yaml.safe_load_all(text):
        if not document:
            continue
        if not isinstance(document, dict):
            raise ConfigValidationError("manifest documents must be mappings")
        if str(document.get("kind", "")).endswith("List"):
            items = document.get("items") or []
        else:
            items = [document]
        for item in items:
            kind = item.get("kind") if isinstance(item, dict) else None
            if kind != POD_MONITOR_KIND:
                logger.debug(f"Skipping object of kind {kind}")
                continue
            yield item


def _as_compile_error(e: Exception, namespace: str, name: str) -> CompileError:
    if isinstance(e, CompileError):
        return e.with_context(namespace=namespace, name=name)
    details = "; ".join(getattr(e, "errors", []))
    message = f"{e}: {details}" if details else str(e)
    return ValidationError(message, namespace=namespace, name=name)


def load_pod_monitors(
    path: Path | str,
    validate: bool = True,
    errors: Optional[dict[str, CompileError]] = None,
) -> list[PodMonitor]:
    """
    Load all PodMonitors from a YAML file.

    Args:
        path: Manifest file
        validate: Validate each document against POD_MONITOR_SCHEMA
        errors: If given, a document that fails to parse is recorded here
            under its "namespace/name" key and loading continues with the
            next document; otherwise the first failure is raised

    Raises:
        FileNotFoundError: If the manifest file doesn't exist
        yaml.YAMLError: If the YAML is invalid
        ConfigValidationError: If a manifest fails schema validation
        ValidationError: If a manifest holds an ambiguous credential reference
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Manifest file not found: {path}")

    text = path.read_text(encoding="utf-8")
    monitors = []
    for document in iter_manifest_documents(text):
        try:
            monitors.append(pod_monitor_from_dict(document, validate=validate))
        except (CompileError, ConfigValidationError) as e:
            if errors is None:
                raise
            namespace, name = _identity(document)
            errors[f"{namespace}/{name}"] = _as_compile_error(e, namespace, name)
            logger.warning(f"Failed to parse podmonitor {namespace}/{name} in {path}: {e}")

    logger.debug(f"Loaded {len(monitors)} podmonitor(s) from {path}")
    return monitors
