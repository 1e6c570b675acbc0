"""
Settings management for the PodMonitor compiler.

This module handles loading, parsing, and validating compiler settings from
YAML files and command-line arguments: how to reach the Kubernetes API server
(kubeconfig or api_server + HTTP client settings), where credential files are
mounted, how inline secret values are fetched, and which monitors to compile.
"""

import os
import re
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Optional
from urllib.parse import urlparse

import yaml
from jsonschema import Draft7Validator

from .errors import ConfigValidationError, UnsupportedFeatureError, ValidationError
from .models import LabelSelector, LabelSelectorRequirement, PodMonitor
from .secrets import (
    DEFAULT_SECRETS_ROOT,
    KubernetesSecretAccessor,
    SecretResolver,
    StaticSecretAccessor,
)


SECRET_SOURCES = ["none", "static", "cluster"]

_STRING_MAP = {"type": "object", "additionalProperties": {"type": "string"}}
_STATIC_STORE = {"type": "object", "additionalProperties": _STRING_MAP}

# JSON Schema for settings validation
SETTINGS_SCHEMA = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "client": {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "api_server": {"type": "string", "minLength": 1},
                "kubeconfig_file": {"type": "string", "minLength": 1},
                "basic_auth": {
                    "type": "object",
                    "additionalProperties": False,
                    "properties": {
                        "username": {"type": "string"},
                        "password": {"type": "string"},
                        "password_file": {"type": "string"}
                    }
                },
                "bearer_token": {"type": "string"},
                "bearer_token_file": {"type": "string"},
                "tls_config": {
                    "type": "object",
                    "additionalProperties": False,
                    "properties": {
                        "ca_file": {"type": "string"},
                        "cert_file": {"type": "string"},
                        "key_file": {"type": "string"},
                        "server_name": {"type": "string"},
                        "insecure_skip_verify": {"type": "boolean"}
                    }
                },
                "authorization": {
                    "type": "object",
                    "additionalProperties": False,
                    "properties": {
                        "type": {"type": "string"},
                        "credentials": {"type": "string"},
                        "credentials_file": {"type": "string"}
                    }
                },
                "proxy_url": {"type": "string"},
                "follow_redirects": {"type": "boolean"},
                "enable_http2": {"type": "boolean"}
            }
        },
        "secrets": {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "mount_root": {"type": "string", "minLength": 1},
                "source": {"type": "string", "enum": SECRET_SOURCES},
                "timeout": {"type": "number", "exclusiveMinimum": 0},
                "static": {
                    "type": "object",
                    "additionalProperties": False,
                    "properties": {
                        "secrets": _STATIC_STORE,
                        "config_maps": _STATIC_STORE
                    }
                }
            }
        },
        "namespaces": {
            "type": "array",
            "items": {"type": "string", "minLength": 1}
        },
        "label_selector": {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "match_labels": _STRING_MAP,
                "match_expressions": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "required": ["key", "operator"],
                        "properties": {
                            "key": {"type": "string"},
                            "operator": {
                                "type": "string",
                                "enum": ["In", "NotIn", "Exists", "DoesNotExist"]
                            },
                            "values": {"type": "array", "items": {"type": "string"}}
                        }
                    }
                }
            }
        }
    }
}


def validate_settings(data: dict[str, Any]) -> list[str]:
    """
    Validate settings data against the schema.

    Args:
        data: Settings dictionary to validate

    Returns:
        List of validation error messages (empty if valid)
    """
    validator = Draft7Validator(SETTINGS_SCHEMA)
    errors = []
    for error in sorted(validator.iter_errors(data), key=lambda e: list(e.path)):
        path = ".".join(str(p) for p in error.path) if error.path else "root"
        errors.append(f"{path}: {error.message}")
    return errors


def expand_env_vars(value: Optional[str]) -> Optional[str]:
    """
    Expand ${VAR_NAME} references in a string.

    Unknown variables expand to an empty string.
    """
    if not isinstance(value, str):
        return value

    def replace_env(match):
        return os.environ.get(match.group(1), "")

    return re.sub(r"\$\{([^}]+)\}", replace_env, value)


@dataclass
class BasicAuthArguments:
    """Basic auth used to reach the API server."""

    username: str = ""
    password: Optional[str] = None
    password_file: Optional[str] = None


@dataclass
class TLSArguments:
    """TLS settings used to reach the API server."""

    ca_file: Optional[str] = None
    cert_file: Optional[str] = None
    key_file: Optional[str] = None
    server_name: Optional[str] = None
    insecure_skip_verify: Optional[bool] = None


@dataclass
class AuthorizationArguments:
    """Authorization header used to reach the API server."""

    type: Optional[str] = None
    credentials: Optional[str] = None
    credentials_file: Optional[str] = None


@dataclass
class HTTPClientArguments:
    """
    HTTP client settings for the API server connection.

    Every field is None until set, so "customized" means "any field present"
    rather than "differs from a default instance".
    """

    basic_auth: Optional[BasicAuthArguments] = None
    bearer_token: Optional[str] = None
    bearer_token_file: Optional[str] = None
    tls_config: Optional[TLSArguments] = None
    authorization: Optional[AuthorizationArguments] = None
    proxy_url: Optional[str] = None
    follow_redirects: Optional[bool] = None
    enable_http2: Optional[bool] = None

    def is_customized(self) -> bool:
        return any(getattr(self, f) is not None for f in self.__dataclass_fields__)

    def validate(self) -> None:
        """Check that at most one authentication method is configured."""
        methods = [
            name for name, present in (
                ("basic_auth", self.basic_auth is not None),
                ("authorization", self.authorization is not None),
                ("bearer_token", self.bearer_token is not None or self.bearer_token_file is not None),
            ) if present
        ]
        if len(methods) > 1:
            raise ValidationError(
                f"at most one of {', '.join(methods)} may be configured",
                field=f"client.{methods[1]}",
            )
        if self.bearer_token is not None and self.bearer_token_file is not None:
            raise ValidationError(
                "at most one of bearer_token and bearer_token_file may be configured",
                field="client.bearer_token_file",
            )
        if self.basic_auth is not None and self.basic_auth.password is not None \
                and self.basic_auth.password_file is not None:
            raise ValidationError(
                "at most one of basic_auth password and password_file may be configured",
                field="client.basic_auth.password_file",
            )
        if self.authorization is not None and self.authorization.credentials is not None \
                and self.authorization.credentials_file is not None:
            raise ValidationError(
                "at most one of authorization credentials and credentials_file may be configured",
                field="client.authorization.credentials_file",
            )


@dataclass
class ClientArguments:
    """
    How to connect to a Kubernetes cluster.

    Attributes:
        api_server: API server URL; requires nothing else but allows http settings
        kubeconfig_file: Path to a kubeconfig; excludes api_server and http settings
        http_client_config: HTTP client settings for api_server
    """

    api_server: Optional[str] = None
    kubeconfig_file: Optional[str] = None
    http_client_config: HTTPClientArguments = field(default_factory=HTTPClientArguments)

    def validate(self) -> None:
        """
        Validate the connection settings.

        Raises:
            ValidationError: If the settings are contradictory
        """
        if self.api_server is not None and self.kubeconfig_file is not None:
            raise ValidationError(
                "only one of api_server and kubeconfig_file can be set",
                field="client.kubeconfig_file",
            )
        if self.kubeconfig_file is not None and self.http_client_config.is_customized():
            raise ValidationError(
                "custom HTTP client configuration is not allowed when kubeconfig_file is set",
                field="client",
            )
        if self.api_server is None and self.http_client_config.is_customized():
            raise ValidationError(
                "api_server must be set when custom HTTP client configuration is provided",
                field="client.api_server",
            )
        if self.api_server is not None:
            parsed = urlparse(self.api_server)
            if parsed.scheme not in ("http", "https") or not parsed.netloc:
                raise ValidationError(
                    f"api_server must be an http(s) URL, got {self.api_server!r}",
                    field="client.api_server",
                )
        self.http_client_config.validate()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ClientArguments":
        basic_data = data.get("basic_auth")
        tls_data = data.get("tls_config")
        auth_data = data.get("authorization")

        http = HTTPClientArguments(
            basic_auth=BasicAuthArguments(
                username=basic_data.get("username", ""),
                password=basic_data.get("password"),
                password_file=expand_env_vars(basic_data.get("password_file")),
            ) if basic_data is not None else None,
            bearer_token=data.get("bearer_token"),
            bearer_token_file=expand_env_vars(data.get("bearer_token_file")),
            tls_config=TLSArguments(
                ca_file=expand_env_vars(tls_data.get("ca_file")),
                cert_file=expand_env_vars(tls_data.get("cert_file")),
                key_file=expand_env_vars(tls_data.get("key_file")),
                server_name=tls_data.get("server_name"),
                insecure_skip_verify=tls_data.get("insecure_skip_verify"),
            ) if tls_data is not None else None,
            authorization=AuthorizationArguments(
                type=auth_data.get("type"),
                credentials=auth_data.get("credentials"),
                credentials_file=expand_env_vars(auth_data.get("credentials_file")),
            ) if auth_data is not None else None,
            proxy_url=data.get("proxy_url"),
            follow_redirects=data.get("follow_redirects"),
            enable_http2=data.get("enable_http2"),
        )
        return cls(
            api_server=data.get("api_server"),
            kubeconfig_file=expand_env_vars(data.get("kubeconfig_file")),
            http_client_config=http,
        )

    def to_dict(self) -> dict[str, Any]:
        def prune(value: Any) -> Any:
            if isinstance(value, dict):
                return {k: prune(v) for k, v in value.items() if v is not None}
            return value

        http = self.http_client_config
        data = {
            "api_server": self.api_server,
            "kubeconfig_file": self.kubeconfig_file,
            "basic_auth": vars(http.basic_auth) if http.basic_auth else None,
            "bearer_token": http.bearer_token,
            "bearer_token_file": http.bearer_token_file,
            "tls_config": vars(http.tls_config) if http.tls_config else None,
            "authorization": vars(http.authorization) if http.authorization else None,
            "proxy_url": http.proxy_url,
            "follow_redirects": http.follow_redirects,
            "enable_http2": http.enable_http2,
        }
        return prune(data)


@dataclass
class SecretsSettings:
    """
    Where credential files are mounted and how inline values are fetched.

    Attributes:
        mount_root: Root directory secrets and config maps are mounted under
        source: none (no inline values), static (values from settings) or
            cluster (values read from the API server)
        timeout: Timeout in seconds for API server reads
        static_secrets: "namespace/name" -> key -> value, for source=static
        static_config_maps: "namespace/name" -> key -> value, for source=static
    """

    mount_root: str = DEFAULT_SECRETS_ROOT
    source: str = "none"
    timeout: float = 10.0
    static_secrets: dict[str, dict[str, str]] = field(default_factory=dict)
    static_config_maps: dict[str, dict[str, str]] = field(default_factory=dict)

    def build_resolver(self, client: ClientArguments) -> SecretResolver:
        """Create the SecretResolver these settings describe."""
        if self.source == "static":
            accessor = StaticSecretAccessor(self.static_secrets, self.static_config_maps)
        elif self.source == "cluster":
            accessor = build_cluster_accessor(client, self.timeout)
        else:
            accessor = None
        return SecretResolver(accessor, root=self.mount_root)


def build_cluster_accessor(client: ClientArguments, timeout: float) -> KubernetesSecretAccessor:
    """Create an API server backed accessor from the client settings."""
    if client.kubeconfig_file is not None:
        raise UnsupportedFeatureError(
            "reading secrets from the cluster requires api_server or in-cluster credentials, "
            "kubeconfig_file is not supported",
            field="secrets.source",
        )
    if client.api_server is None:
        return KubernetesSecretAccessor.in_cluster(timeout=timeout)

    http = client.http_client_config
    token = http.bearer_token
    if http.bearer_token_file:
        token = Path(http.bearer_token_file).read_text(encoding="utf-8").strip()
    if http.authorization is not None:
        token = http.authorization.credentials
        if http.authorization.credentials_file:
            token = Path(http.authorization.credentials_file).read_text(encoding="utf-8").strip()

    auth = None
    if http.basic_auth is not None:
        password = http.basic_auth.password or ""
        if http.basic_auth.password_file:
            password = Path(http.basic_auth.password_file).read_text(encoding="utf-8").strip()
        auth = (http.basic_auth.username, password)

    verify: bool | str = True
    cert = None
    tls = http.tls_config
    if tls is not None:
        if tls.insecure_skip_verify:
            verify = False
        elif tls.ca_file:
            verify = tls.ca_file
        if tls.cert_file and tls.key_file:
            cert = (tls.cert_file, tls.key_file)

    return KubernetesSecretAccessor(
        client.api_server,
        timeout=timeout,
        bearer_token=token,
        auth=auth,
        verify=verify,
        cert=cert,
    )


@dataclass
class CompilerSettings:
    """
    Main settings class for the compiler.

    Attributes:
        client: Kubernetes API connection used in generated discovery configs
        secrets: Credential mount and lookup settings
        namespaces: Namespaces to compile monitors from (empty means all)
        label_selector: Only compile monitors whose labels match
    """

    client: ClientArguments = field(default_factory=ClientArguments)
    secrets: SecretsSettings = field(default_factory=SecretsSettings)
    namespaces: list[str] = field(default_factory=list)
    label_selector: Optional[LabelSelector] = None

    def __post_init__(self):
        if self.secrets.source not in SECRET_SOURCES:
            raise ValueError(f"Invalid secrets source: {self.secrets.source}. Must be one of {SECRET_SOURCES}")
        self.client.validate()

    @classmethod
    def from_yaml(cls, path: Path | str, validate: bool = True) -> "CompilerSettings":
        """
        Load settings from a YAML file.

        Raises:
            FileNotFoundError: If the file doesn't exist
            yaml.YAMLError: If the YAML is invalid
            ConfigValidationError: If schema validation fails
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Settings file not found: {path}")

        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        if validate:
            errors = validate_settings(data)
            if errors:
                raise ConfigValidationError(
                    f"Settings validation failed with {len(errors)} error(s)",
                    errors=errors,
                )

        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CompilerSettings":
        secrets_data = data.get("secrets", {})
        static_data = secrets_data.get("static", {})
        secrets = SecretsSettings(
            mount_root=expand_env_vars(secrets_data.get("mount_root", DEFAULT_SECRETS_ROOT)),
            source=secrets_data.get("source", "none"),
            timeout=float(secrets_data.get("timeout", 10.0)),
            static_secrets=static_data.get("secrets", {}),
            static_config_maps=static_data.get("config_maps", {}),
        )

        selector = None
        selector_data = data.get("label_selector")
        if selector_data is not None:
            selector = LabelSelector(
                match_labels=dict(selector_data.get("match_labels", {})),
                match_expressions=[
                    LabelSelectorRequirement(
                        key=expr["key"],
                        operator=expr["operator"],
                        values=list(expr.get("values", [])),
                    )
                    for expr in selector_data.get("match_expressions", [])
                ],
            )

        return cls(
            client=ClientArguments.from_dict(data.get("client", {})),
            secrets=secrets,
            namespaces=list(data.get("namespaces", [])),
            label_selector=selector,
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "client": self.client.to_dict(),
            "secrets": {
                "mount_root": self.secrets.mount_root,
                "source": self.secrets.source,
                "timeout": self.secrets.timeout,
                "static": {
                    "secrets": self.secrets.static_secrets,
                    "config_maps": self.secrets.static_config_maps,
                },
            },
            "namespaces": list(self.namespaces),
        }
        if self.label_selector is not None:
            data["label_selector"] = {
                "match_labels": dict(self.label_selector.match_labels),
                "match_expressions": [
                    {"key": e.key, "operator": e.operator, "values": list(e.values)}
                    for e in self.label_selector.match_expressions
                ],
            }
        return data

    def merge_cli_args(
        self,
        api_server: Optional[str] = None,
        kubeconfig_file: Optional[str] = None,
        secrets_root: Optional[str] = None,
        secret_source: Optional[str] = None,
        namespaces: Optional[list[str]] = None,
    ) -> "CompilerSettings":
        """
        Merge command-line arguments into the settings.

        CLI arguments take precedence over file settings. A CLI api_server or
        kubeconfig_file replaces the whole connection mode of the file.

        Returns:
            New CompilerSettings with merged values
        """
        client = self.client
        if api_server:
            client = ClientArguments(api_server=api_server, http_client_config=client.http_client_config)
        if kubeconfig_file:
            client = ClientArguments(kubeconfig_file=kubeconfig_file)

        secrets = self.secrets
        if secrets_root:
            secrets = replace(secrets, mount_root=secrets_root)
        if secret_source:
            secrets = replace(secrets, source=secret_source)

        return CompilerSettings(
            client=client,
            secrets=secrets,
            namespaces=list(namespaces) if namespaces else list(self.namespaces),
            label_selector=self.label_selector,
        )

    def selects(self, monitor: PodMonitor) -> bool:
        """Check whether a monitor falls within the configured namespaces and selector."""
        if self.namespaces and monitor.namespace not in self.namespaces:
            return False
        if self.label_selector is not None and not self.label_selector.matches(monitor.labels):
            return False
        return True


def load_settings(
    config_path: Optional[Path | str] = None,
    api_server: Optional[str] = None,
    kubeconfig_file: Optional[str] = None,
    secrets_root: Optional[str] = None,
    secret_source: Optional[str] = None,
    namespaces: Optional[list[str]] = None,
    validate: bool = True,
) -> CompilerSettings:
    """
    Load and merge settings from file and CLI arguments.

    This is the main entry point for loading settings.
    """
    if config_path:
        settings = CompilerSettings.from_yaml(config_path, validate=validate)
    else:
        settings = CompilerSettings()

    return settings.merge_cli_args(
        api_server=api_server,
        kubeconfig_file=kubeconfig_file,
        secrets_root=secrets_root,
        secret_source=secret_source,
        namespaces=namespaces,
    )
