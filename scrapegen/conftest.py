"""
Pytest configuration and fixtures for scrapegen.

This module provides hypothesis profiles and shared fixtures for the compiler
tests.
"""

import pytest
from hypothesis import settings, Verbosity

from scrapegen.compiler.generator import ConfigGenerator
from scrapegen.compiler.models import Endpoint, PodMonitor, PodMonitorSpec
from scrapegen.compiler.secrets import SecretResolver, StaticSecretAccessor

# Configure Hypothesis profiles
settings.register_profile(
    "default",
    max_examples=100,
    verbosity=Verbosity.normal,
    deadline=None,
)

settings.register_profile(
    "ci",
    max_examples=200,
    verbosity=Verbosity.verbose,
    deadline=None,
)

settings.register_profile(
    "dev",
    max_examples=10,
    verbosity=Verbosity.verbose,
    deadline=None,
)


def pytest_configure(config):
    """Configure pytest with custom settings."""
    settings.load_profile("default")


@pytest.fixture
def pod_monitor() -> PodMonitor:
    """operator/podmonitor with a single named `metrics` endpoint."""
    return PodMonitor(
        namespace="operator",
        name="podmonitor",
        spec=PodMonitorSpec(pod_metrics_endpoints=[Endpoint(port="metrics")]),
    )


@pytest.fixture
def static_accessor() -> StaticSecretAccessor:
    return StaticSecretAccessor(
        secrets={
            "operator/oauth": {"client-id": "scraper", "client-secret": "s3cr3t"},
            "operator/basic": {"user": "admin", "pass": "hunter2"},
            "operator/tls": {"tls.crt": "CERT", "tls.key": "KEY"},
        },
        config_maps={
            "operator/oauth-cm": {"client-id": "cm-scraper"},
            "operator/ca": {"ca.crt": "CA"},
        },
    )


@pytest.fixture
def resolver(static_accessor) -> SecretResolver:
    return SecretResolver(static_accessor, root="/etc/scrapegen")


@pytest.fixture
def generator(resolver) -> ConfigGenerator:
    return ConfigGenerator(secrets=resolver)
