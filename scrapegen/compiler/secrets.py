"""
Secret and ConfigMap reference resolution.

Credential references are resolved in one of two ways:

- resolve_as_file computes a deterministic path under a mount root without
  touching storage; reading the file is left to the scrape engine.
- resolve_as_value eagerly fetches the value through a SecretAccessor. It is
  only used where the output schema has no file-based form (e.g. an OAuth2
  client id) and is the single point where compilation performs I/O.

Two accessors are provided: StaticSecretAccessor (in-memory) and
KubernetesSecretAccessor, which reads from the Kubernetes API server with httpx.
"""

import base64
import logging
import os
import posixpath
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, Union
from urllib.parse import quote

import httpx

from .errors import SecretResolutionError, UnsupportedFeatureError, ValidationError
from .models import SecretKeySelector, SecretKind, SecretOrConfigMap

logger = logging.getLogger(__name__)

DEFAULT_SECRETS_ROOT = "/var/lib/scrapegen"

SERVICE_ACCOUNT_DIR = Path("/var/run/secrets/kubernetes.io/serviceaccount")

SecretRef = Union[SecretOrConfigMap, SecretKeySelector]


def _as_reference(ref: SecretRef) -> SecretOrConfigMap:
    if isinstance(ref, SecretKeySelector):
        return ref.to_reference()
    return ref


class SecretAccessor(ABC):
    """Capability for reading a single key of a Secret or ConfigMap."""

    @abstractmethod
    def read(self, kind: SecretKind, namespace: str, name: str, key: str) -> str:
        """
        Read one key.

        Raises:
            SecretResolutionError: If the object or key cannot be read
        """


class StaticSecretAccessor(SecretAccessor):
    """
    In-memory accessor.

    Objects are keyed by "namespace/name", each holding a key -> value map.
    """

    def __init__(
        self,
        secrets: Optional[dict[str, dict[str, str]]] = None,
        config_maps: Optional[dict[str, dict[str, str]]] = None,
    ):
        self.secrets = dict(secrets or {})
        self.config_maps = dict(config_maps or {})

    def read(self, kind: SecretKind, namespace: str, name: str, key: str) -> str:
        store = self.secrets if kind == SecretKind.SECRET else self.config_maps
        data = store.get(f"{namespace}/{name}")
        if data is None:
            raise SecretResolutionError(f"{kind.value} {namespace}/{name} not found")
        if key not in data:
            raise SecretResolutionError(f"key {key!r} not found in {kind.value} {namespace}/{name}")
        return data[key]


class KubernetesSecretAccessor(SecretAccessor):
    """
    Accessor reading Secrets and ConfigMaps from the Kubernetes API server.

    Example:
        >>> accessor = KubernetesSecretAccessor("https://kubernetes.default.svc",
        ...                                     bearer_token=token, verify=ca_path)
        >>> accessor.read(SecretKind.SECRET, "monitoring", "oauth", "client-id")
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        bearer_token: Optional[str] = None,
        auth: Optional[tuple[str, str]] = None,
        verify: Union[bool, str] = True,
        cert: Optional[tuple[str, str]] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """
        Initialize the accessor.

        Args:
            base_url: API server URL (e.g., https://kubernetes.default.svc)
            timeout: Request timeout in seconds (default: 10.0)
            bearer_token: Optional bearer token sent in the Authorization header
            auth: Optional tuple of (username, password) for basic auth
            verify: TLS verification flag or CA bundle path
            cert: Optional (cert_file, key_file) client certificate pair
            transport: Optional httpx transport, mainly for tests
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.headers = {"Accept": "application/json"}
        if bearer_token:
            self.headers["Authorization"] = f"Bearer {bearer_token}"
        self.auth = auth
        self.verify = verify
        self.cert = cert
        self.transport = transport
        self._client: Optional[httpx.Client] = None
        self._client_lock = threading.Lock()

    @classmethod
    def in_cluster(cls, timeout: float = 10.0) -> "KubernetesSecretAccessor":
        """Build an accessor from the pod's service account."""
        host = os.environ.get("KUBERNETES_SERVICE_HOST")
        port = os.environ.get("KUBERNETES_SERVICE_PORT", "443")
        if not host:
            raise UnsupportedFeatureError(
                "not running inside a cluster: KUBERNETES_SERVICE_HOST is not set"
            )
        token = (SERVICE_ACCOUNT_DIR / "token").read_text(encoding="utf-8").strip()
        ca_file = SERVICE_ACCOUNT_DIR / "ca.crt"
        logger.info("Using pod service account via in-cluster config")
        return cls(
            f"https://{host}:{port}",
            timeout=timeout,
            bearer_token=token,
            verify=str(ca_file) if ca_file.exists() else True,
        )

    @property
    def client(self) -> httpx.Client:
        """Get or create the HTTP client."""
        if self._client is None:
            with self._client_lock:
                if self._client is None:
                    self._client = httpx.Client(
                        base_url=self.base_url,
                        timeout=self.timeout,
                        auth=self.auth,
                        headers=self.headers,
                        verify=self.verify,
                        cert=self.cert,
                        transport=self.transport,
                    )
        return self._client

    def close(self) -> None:
        """Close the HTTP client."""
        with self._client_lock:
            if self._client is not None:
                self._client.close()
                self._client = None

    def __enter__(self) -> "KubernetesSecretAccessor":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def _handle_request_error(self, e: httpx.HTTPError, endpoint: str) -> None:
        """Map httpx exceptions onto SecretResolutionError."""
        if isinstance(e, httpx.TimeoutException):
            raise SecretResolutionError(
                f"request to {endpoint} timed out after {self.timeout}s"
            ) from e
        if isinstance(e, httpx.HTTPStatusError):
            raise SecretResolutionError(
                f"HTTP error from {endpoint}: {e.response.status_code}"
            ) from e
        raise SecretResolutionError(f"failed to read {endpoint}: {e}") from e

    def read(self, kind: SecretKind, namespace: str, name: str, key: str) -> str:
        resource = "secrets" if kind == SecretKind.SECRET else "configmaps"
        endpoint = f"/api/v1/namespaces/{quote(namespace, safe='')}/{resource}/{quote(name, safe='')}"
        logger.debug(f"Fetching {kind.value} {namespace}/{name} key {key}")

        try:
            response = self.client.get(endpoint)
            response.raise_for_status()
        except httpx.HTTPError as e:
            self._handle_request_error(e, endpoint)

        try:
            payload = response.json()
        except ValueError as e:
            raise SecretResolutionError(f"response from {endpoint} is not valid JSON") from e
        if not isinstance(payload, dict):
            raise SecretResolutionError(f"response from {endpoint} is not a JSON object")

        data = payload.get("data") or {}
        if not isinstance(data, dict):
            raise SecretResolutionError(f"data of {kind.value} {namespace}/{name} is not a mapping")
        if key not in data:
            raise SecretResolutionError(f"key {key!r} not found in {kind.value} {namespace}/{name}")

        value = data[key]
        if not isinstance(value, str):
            raise SecretResolutionError(f"key {key!r} of {kind.value} {namespace}/{name} is not a string")
        if kind == SecretKind.CONFIG_MAP:
            return value
        try:
            return base64.b64decode(value, validate=True).decode("utf-8")
        except (ValueError, UnicodeDecodeError) as e:
            raise SecretResolutionError(
                f"key {key!r} of secret {namespace}/{name} is not valid base64 text"
            ) from e


class SecretResolver:
    """Resolves credential references to mount paths or eagerly fetched values."""

    def __init__(
        self,
        accessor: Optional[SecretAccessor] = None,
        root: str = DEFAULT_SECRETS_ROOT,
    ):
        self.accessor = accessor
        self.root = root

    def resolve_as_file(self, namespace: str, ref: SecretRef) -> str:
        """Compute the path a referenced key is mounted at. Performs no I/O."""
        ref = _as_reference(ref)
        if not ref.name or not ref.key:
            raise ValidationError(f"{ref.kind.value} reference requires both name and key")
        directory = "secrets" if ref.kind == SecretKind.SECRET else "configmaps"
        return posixpath.join(self.root, directory, namespace, ref.name, ref.key)

    def resolve_as_value(self, namespace: str, ref: SecretRef) -> str:
        """
        Fetch a referenced key through the accessor.

        Raises:
            UnsupportedFeatureError: If no accessor is configured
            SecretResolutionError: If the fetch fails
        """
        ref = _as_reference(ref)
        if self.accessor is None:
            raise UnsupportedFeatureError(
                f"inline value of {ref.kind.value} {namespace}/{ref.name} requires a secret accessor"
            )
        try:
            return self.accessor.read(ref.kind, namespace, ref.name, ref.key)
        except SecretResolutionError:
            raise
        except (KeyError, OSError, ValueError) as e:
            raise SecretResolutionError(
                f"failed to read {ref.kind.value} {namespace}/{ref.name}: {e}"
            ) from e
