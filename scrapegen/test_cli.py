"""
Tests for the scrapegen command-line interface.
"""

from pathlib import Path

import pytest
import yaml
from click.testing import CliRunner

from scrapegen import __version__
from scrapegen.cli import cli


MONITORS = """\
kind: PodMonitor
metadata: {name: app, namespace: monitoring}
spec:
  podMetricsEndpoints:
    - port: metrics
---
kind: PodMonitor
metadata: {name: exporter, namespace: default}
spec:
  namespaceSelector: {any: true}
  podMetricsEndpoints:
    - port: http
    - targetPort: 9100
      interval: 30s
"""

BROKEN = """\
kind: PodMonitor
metadata: {name: broken, namespace: monitoring}
spec:
  podMetricsEndpoints:
    - port: metrics
      interval: 10s
      scrapeTimeout: 1m
"""


AMBIGUOUS = """\
kind: PodMonitor
metadata: {name: good, namespace: ns}
spec:
  podMetricsEndpoints:
    - port: metrics
---
kind: PodMonitor
metadata: {name: ambiguous, namespace: ns}
spec:
  podMetricsEndpoints:
    - port: metrics
      tlsConfig:
        ca:
          secret: {name: s, key: ca.crt}
          configMap: {name: c, key: ca.crt}
"""


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def manifests(tmp_path: Path) -> Path:
    path = tmp_path / "monitors.yaml"
    path.write_text(MONITORS, encoding="utf-8")
    return path


def _job_names(path: Path) -> list[str]:
    document = yaml.safe_load(path.read_text(encoding="utf-8"))
    return [c["job_name"] for c in document["scrape_configs"]]


class TestCompile:

    def test_writes_scrape_configs(self, runner: CliRunner, manifests: Path, tmp_path: Path):
        output = tmp_path / "out.yaml"
        result = runner.invoke(cli, ["compile", str(manifests), "-o", str(output)])

        assert result.exit_code == 0
        assert _job_names(output) == [
            "pod/default/exporter/0",
            "pod/default/exporter/1",
            "pod/monitoring/app/0",
        ]

    def test_namespace_filter(self, runner: CliRunner, manifests: Path, tmp_path: Path):
        output = tmp_path / "out.yaml"
        result = runner.invoke(cli, ["compile", str(manifests), "-n", "monitoring", "-o", str(output)])

        assert result.exit_code == 0
        assert _job_names(output) == ["pod/monitoring/app/0"]

    def test_api_server_option(self, runner: CliRunner, manifests: Path, tmp_path: Path):
        output = tmp_path / "out.yaml"
        result = runner.invoke(cli, [
            "compile", str(manifests), "--api-server", "https://10.0.0.1:6443", "-o", str(output),
        ])

        assert result.exit_code == 0
        document = yaml.safe_load(output.read_text(encoding="utf-8"))
        for config in document["scrape_configs"]:
            assert config["kubernetes_sd_configs"][0]["api_server"] == "https://10.0.0.1:6443"

    def test_failing_monitor_sets_exit_code(self, runner: CliRunner, manifests: Path, tmp_path: Path):
        broken = tmp_path / "broken.yaml"
        broken.write_text(BROKEN, encoding="utf-8")
        output = tmp_path / "out.yaml"

        result = runner.invoke(cli, ["compile", str(manifests), str(broken), "-o", str(output)])

        assert result.exit_code == 1
        assert "pod/monitoring/broken/0" not in _job_names(output)
        assert len(_job_names(output)) == 3

    def test_unparseable_document_keeps_siblings(self, runner: CliRunner, tmp_path: Path):
        path = tmp_path / "mixed.yaml"
        path.write_text(AMBIGUOUS, encoding="utf-8")
        output = tmp_path / "out.yaml"

        result = runner.invoke(cli, ["compile", str(path), "-o", str(output)])

        assert result.exit_code == 1
        assert _job_names(output) == ["pod/ns/good/0"]

    def test_invalid_settings(self, runner: CliRunner, manifests: Path, tmp_path: Path):
        settings_file = tmp_path / "settings.yaml"
        settings_file.write_text("secrets:\n  source: vault\n", encoding="utf-8")

        result = runner.invoke(cli, ["-c", str(settings_file), "compile", str(manifests)])

        assert result.exit_code == 1

    def test_stdout(self, runner: CliRunner, manifests: Path):
        result = runner.invoke(cli, ["compile", str(manifests), "-n", "monitoring"])

        assert result.exit_code == 0
        assert "job_name: pod/monitoring/app/0" in result.output


class TestValidate:

    def test_valid(self, runner: CliRunner, manifests: Path):
        result = runner.invoke(cli, ["validate", str(manifests)])
        assert result.exit_code == 0

    def test_invalid(self, runner: CliRunner, tmp_path: Path):
        broken = tmp_path / "broken.yaml"
        broken.write_text(BROKEN, encoding="utf-8")

        result = runner.invoke(cli, ["validate", str(broken)])
        assert result.exit_code == 1

    def test_unparseable_document(self, runner: CliRunner, tmp_path: Path):
        path = tmp_path / "mixed.yaml"
        path.write_text(AMBIGUOUS, encoding="utf-8")

        result = runner.invoke(cli, ["validate", str(path)])

        assert result.exit_code == 1
        assert "ns/ambiguous" in result.output


def test_version(runner: CliRunner):
    result = runner.invoke(cli, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output
