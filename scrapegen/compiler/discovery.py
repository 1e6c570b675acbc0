"""
Kubernetes service discovery config generation.

The discovery config mostly depends on the local settings for reaching the
cluster. When neither a kubeconfig nor an API server is configured it is left
empty and the scrape engine falls back to in-cluster credentials.
"""

from typing import Optional

from .config import ClientArguments, HTTPClientArguments
from .models import (
    AttachMetadata,
    Authorization,
    BasicAuth,
    HTTPClientConfig,
    NamespaceSelector,
    SDConfig,
    TLSConfig,
)
from .namespaces import resolve_namespaces

POD_ROLE = "pod"


def convert_http_client_config(args: HTTPClientArguments) -> HTTPClientConfig:
    """Convert API server HTTP settings into the output HTTP client block."""
    cfg = HTTPClientConfig()

    if args.basic_auth is not None:
        cfg.basic_auth = BasicAuth(
            username=args.basic_auth.username,
            password=args.basic_auth.password,
            password_file=args.basic_auth.password_file,
        )
    if args.bearer_token:
        cfg.bearer_token = args.bearer_token
    if args.bearer_token_file:
        cfg.bearer_token_file = args.bearer_token_file

    if args.tls_config is not None:
        tls = args.tls_config
        cfg.tls_config = TLSConfig(
            ca_file=tls.ca_file,
            cert_file=tls.cert_file,
            key_file=tls.key_file,
            server_name=tls.server_name,
            insecure_skip_verify=bool(tls.insecure_skip_verify),
        )

    if args.authorization is not None:
        cfg.authorization = Authorization(
            type=args.authorization.type or "Bearer",
            credentials=args.authorization.credentials,
            credentials_file=args.authorization.credentials_file,
        )

    if args.proxy_url:
        cfg.proxy_url = args.proxy_url
    if args.follow_redirects is not None:
        cfg.follow_redirects = args.follow_redirects
    if args.enable_http2 is not None:
        cfg.enable_http2 = args.enable_http2
    return cfg


def build_sd_config(
    client: ClientArguments,
    namespace_selector: NamespaceSelector,
    namespace: str,
    role: str = POD_ROLE,
    attach_metadata: Optional[AttachMetadata] = None,
) -> SDConfig:
    """
    Build the kubernetes_sd_config for a monitor.

    Args:
        client: Connection settings for the cluster
        namespace_selector: The monitor's namespace selector
        namespace: The monitor's own namespace
        role: Discovery role, fixed per monitor kind
        attach_metadata: Optional node metadata flag, passed through

    Returns:
        SDConfig with namespaces and connection resolved
    """
    cfg = SDConfig(role=role, namespaces=resolve_namespaces(namespace_selector, namespace))

    if client.kubeconfig_file:
        cfg.kubeconfig_file = client.kubeconfig_file
    elif client.api_server:
        cfg.api_server = client.api_server
        cfg.http_client_config = convert_http_client_config(client.http_client_config)

    if attach_metadata is not None and attach_metadata.node is not None:
        cfg.attach_metadata_node = attach_metadata.node
    return cfg
