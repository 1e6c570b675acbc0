"""
Tests for secret reference resolution and the secret accessors.

The API server accessor is exercised against httpx.MockTransport.
"""

import base64
from concurrent.futures import ThreadPoolExecutor

import httpx
import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from scrapegen.compiler.errors import (
    SecretResolutionError,
    UnsupportedFeatureError,
    ValidationError,
)
from scrapegen.compiler.generator import ConfigGenerator, compile_monitors
from scrapegen.compiler.models import (
    Endpoint,
    OAuth2,
    PodMonitor,
    PodMonitorSpec,
    SecretKeySelector,
    SecretKind,
    SecretOrConfigMap,
)
from scrapegen.compiler.secrets import (
    DEFAULT_SECRETS_ROOT,
    KubernetesSecretAccessor,
    SecretAccessor,
    SecretResolver,
    StaticSecretAccessor,
)


names = st.from_regex(r"[a-z][a-z0-9-]{0,15}", fullmatch=True)
keys = st.from_regex(r"[A-Za-z0-9._-]{1,15}", fullmatch=True).filter(lambda k: k not in (".", ".."))


def _b64(value: str) -> str:
    return base64.b64encode(value.encode("utf-8")).decode("ascii")


def _api_handler(request: httpx.Request) -> httpx.Response:
    routes = {
        "/api/v1/namespaces/monitoring/secrets/oauth": {"data": {"client-id": _b64("scraper")}},
        "/api/v1/namespaces/monitoring/secrets/broken": {"data": {"client-id": "abc"}},
        "/api/v1/namespaces/monitoring/secrets/corrupt": {"data": {"client-id": "c2Nya$XBlcg=="}},
        "/api/v1/namespaces/monitoring/secrets/listing": ["not", "an", "object"],
        "/api/v1/namespaces/monitoring/secrets/nodata": {"data": ["client-id"]},
        "/api/v1/namespaces/monitoring/configmaps/oauth-cm": {"data": {"client-id": "cm-scraper"}},
    }
    body = routes.get(request.url.path)
    if body is None:
        return httpx.Response(404, json={"kind": "Status", "reason": "NotFound"})
    return httpx.Response(200, json=body)


@pytest.fixture
def api_accessor():
    accessor = KubernetesSecretAccessor(
        "https://10.0.0.1:6443",
        bearer_token="token",
        transport=httpx.MockTransport(_api_handler),
    )
    yield accessor
    accessor.close()


class TestResolveAsFile:

    def test_secret_path(self, resolver: SecretResolver):
        path = resolver.resolve_as_file("operator", SecretKeySelector("tls", "tls.key"))
        assert path == "/etc/scrapegen/secrets/operator/tls/tls.key"

    def test_config_map_path(self, resolver: SecretResolver):
        path = resolver.resolve_as_file("operator", SecretOrConfigMap(SecretKind.CONFIG_MAP, "ca", "ca.crt"))
        assert path == "/etc/scrapegen/configmaps/operator/ca/ca.crt"

    def test_default_root(self):
        path = SecretResolver().resolve_as_file("ns", SecretKeySelector("s", "k"))
        assert path == f"{DEFAULT_SECRETS_ROOT}/secrets/ns/s/k"

    def test_does_not_touch_storage(self):
        class FailingAccessor(SecretAccessor):
            def read(self, kind, namespace, name, key):
                raise AssertionError("resolve_as_file must not read")

        resolver = SecretResolver(FailingAccessor(), root="/mnt")
        assert resolver.resolve_as_file("ns", SecretKeySelector("s", "k")) == "/mnt/secrets/ns/s/k"

    @pytest.mark.parametrize("name,key", [("", "k"), ("s", "")])
    def test_incomplete_reference(self, resolver: SecretResolver, name: str, key: str):
        with pytest.raises(ValidationError):
            resolver.resolve_as_file("ns", SecretKeySelector(name, key))

    @pytest.mark.property
    @given(namespace=names, name=names, key=keys)
    @settings(max_examples=100)
    def test_path_is_deterministic(self, namespace: str, name: str, key: str):
        resolver = SecretResolver(root="/etc/scrapegen")
        ref = SecretOrConfigMap(SecretKind.SECRET, name, key)

        path = resolver.resolve_as_file(namespace, ref)

        assert path == resolver.resolve_as_file(namespace, ref)
        assert path.split("/")[-3:] == [namespace, name, key]


class TestResolveAsValue:

    def test_secret(self, resolver: SecretResolver):
        assert resolver.resolve_as_value("operator", SecretKeySelector("oauth", "client-id")) == "scraper"

    def test_config_map(self, resolver: SecretResolver):
        ref = SecretOrConfigMap(SecretKind.CONFIG_MAP, "oauth-cm", "client-id")
        assert resolver.resolve_as_value("operator", ref) == "cm-scraper"

    def test_wrong_namespace(self, resolver: SecretResolver):
        with pytest.raises(SecretResolutionError):
            resolver.resolve_as_value("other", SecretKeySelector("oauth", "client-id"))

    def test_missing_key(self, resolver: SecretResolver):
        with pytest.raises(SecretResolutionError, match="client-id2"):
            resolver.resolve_as_value("operator", SecretKeySelector("oauth", "client-id2"))

    def test_no_accessor(self):
        with pytest.raises(UnsupportedFeatureError):
            SecretResolver().resolve_as_value("operator", SecretKeySelector("oauth", "client-id"))

    def test_accessor_os_error_is_wrapped(self):
        class FileAccessor(SecretAccessor):
            def read(self, kind, namespace, name, key):
                raise FileNotFoundError(f"/nonexistent/{name}/{key}")

        with pytest.raises(SecretResolutionError):
            SecretResolver(FileAccessor()).resolve_as_value("ns", SecretKeySelector("s", "k"))


class TestStaticSecretAccessor:

    def test_kinds_are_separate(self, static_accessor: StaticSecretAccessor):
        with pytest.raises(SecretResolutionError):
            static_accessor.read(SecretKind.CONFIG_MAP, "operator", "oauth", "client-id")


class TestKubernetesSecretAccessor:

    def test_secret_is_base64_decoded(self, api_accessor: KubernetesSecretAccessor):
        assert api_accessor.read(SecretKind.SECRET, "monitoring", "oauth", "client-id") == "scraper"

    def test_config_map_is_plain(self, api_accessor: KubernetesSecretAccessor):
        assert api_accessor.read(SecretKind.CONFIG_MAP, "monitoring", "oauth-cm", "client-id") == "cm-scraper"

    def test_not_found(self, api_accessor: KubernetesSecretAccessor):
        with pytest.raises(SecretResolutionError, match="404"):
            api_accessor.read(SecretKind.SECRET, "monitoring", "absent", "client-id")

    def test_missing_key(self, api_accessor: KubernetesSecretAccessor):
        with pytest.raises(SecretResolutionError, match="nope"):
            api_accessor.read(SecretKind.SECRET, "monitoring", "oauth", "nope")

    def test_invalid_base64(self, api_accessor: KubernetesSecretAccessor):
        with pytest.raises(SecretResolutionError, match="base64"):
            api_accessor.read(SecretKind.SECRET, "monitoring", "broken", "client-id")

    def test_sends_bearer_token(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["authorization"] = request.headers.get("Authorization")
            return httpx.Response(200, json={"data": {"k": "v"}})

        with KubernetesSecretAccessor(
            "https://10.0.0.1:6443/", bearer_token="abc", transport=httpx.MockTransport(handler),
        ) as accessor:
            accessor.read(SecretKind.CONFIG_MAP, "ns", "cm", "k")

        assert seen["authorization"] == "Bearer abc"

    def test_timeout(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        accessor = KubernetesSecretAccessor("https://10.0.0.1:6443", timeout=2.0,
                                            transport=httpx.MockTransport(handler))
        with pytest.raises(SecretResolutionError, match="timed out after 2.0s"):
            accessor.read(SecretKind.SECRET, "ns", "s", "k")

    def test_connection_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        accessor = KubernetesSecretAccessor("https://10.0.0.1:6443", transport=httpx.MockTransport(handler))
        with pytest.raises(SecretResolutionError, match="connection refused"):
            accessor.read(SecretKind.SECRET, "ns", "s", "k")

    def test_in_cluster_requires_service_host(self, monkeypatch):
        monkeypatch.delenv("KUBERNETES_SERVICE_HOST", raising=False)
        with pytest.raises(UnsupportedFeatureError):
            KubernetesSecretAccessor.in_cluster()

    def test_through_resolver(self, api_accessor: KubernetesSecretAccessor):
        resolver = SecretResolver(api_accessor)
        assert resolver.resolve_as_value("monitoring", SecretKeySelector("oauth", "client-id")) == "scraper"

    @pytest.mark.parametrize("name", ["listing", "nodata"])
    def test_unexpected_payload_shape(self, api_accessor: KubernetesSecretAccessor, name: str):
        with pytest.raises(SecretResolutionError):
            api_accessor.read(SecretKind.SECRET, "monitoring", name, "client-id")

    def test_non_json_body(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<html>gateway</html>")

        accessor = KubernetesSecretAccessor("https://10.0.0.1:6443", transport=httpx.MockTransport(handler))
        with pytest.raises(SecretResolutionError, match="not valid JSON"):
            accessor.read(SecretKind.SECRET, "ns", "s", "k")

    def test_non_alphabet_base64_is_rejected(self, api_accessor: KubernetesSecretAccessor):
        with pytest.raises(SecretResolutionError, match="base64"):
            api_accessor.read(SecretKind.SECRET, "monitoring", "corrupt", "client-id")

    def test_client_is_shared_across_threads(self, api_accessor: KubernetesSecretAccessor):
        with ThreadPoolExecutor(max_workers=8) as pool:
            clients = list(pool.map(lambda _: api_accessor.client, range(32)))
        assert all(c is clients[0] for c in clients)

    def test_bad_payload_fails_only_its_monitor(self, api_accessor: KubernetesSecretAccessor):
        def monitor(name: str, secret: str) -> PodMonitor:
            return PodMonitor("monitoring", name, spec=PodMonitorSpec(pod_metrics_endpoints=[Endpoint(
                port="metrics",
                oauth2=OAuth2(
                    client_id=SecretOrConfigMap(SecretKind.SECRET, secret, "client-id"),
                    client_secret=SecretKeySelector(secret, "client-secret"),
                    token_url="https://auth.example.com/token",
                ),
            )]))

        generator = ConfigGenerator(secrets=SecretResolver(api_accessor))
        report = compile_monitors(generator, [monitor("bad", "listing"), monitor("good", "oauth")])

        assert isinstance(report.errors["monitoring/bad"], SecretResolutionError)
        assert report.errors["monitoring/bad"].field == "oauth2.clientId"
        assert [c.job_name for c in report.scrape_configs()] == ["pod/monitoring/good/0"]
