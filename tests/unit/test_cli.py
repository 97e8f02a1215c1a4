# ABOUTME: Unit tests for the gitops-demo command-line interface
# ABOUTME: Tests commands, exit codes and printed summaries with collaborators mocked

from pathlib import Path
from unittest.mock import MagicMock

import pytest
import structlog
import yaml
from typer.testing import CliRunner

from gitops_demo import __version__, cli
from gitops_demo.bootstrap import BootstrapResult
from gitops_demo.config import AppSettings
from gitops_demo.errors import BootstrapError, CommandError, MissingDependencyError
from gitops_demo.manifests import APPLICATION_FILE, build_kustomization, dump_yaml, load_manifest
from gitops_demo.utils.client import Application, HealthReport

cli_runner = CliRunner()


@pytest.fixture
def bootstrapper(monkeypatch: pytest.MonkeyPatch) -> MagicMock:
    """Replace Bootstrapper and return the mock class."""
    mock_class = MagicMock()
    monkeypatch.setattr(cli, "Bootstrapper", mock_class)
    return mock_class


@pytest.fixture
def installer(monkeypatch: pytest.MonkeyPatch) -> MagicMock:
    """Replace ArgocdInstaller and skip the kubectl PATH check."""
    mock_class = MagicMock()
    monkeypatch.setattr(cli, "ArgocdInstaller", mock_class)
    monkeypatch.setattr(cli, "require_tools", lambda tools: None)
    return mock_class.return_value


@pytest.mark.unit
class TestGlobalOptions:
    """Tests for the CLI callback."""

    def test_version(self):
        """Test --version prints the package version."""
        result = cli_runner.invoke(cli.app, ["--version"])

        assert result.exit_code == 0
        assert f"gitops-demo {__version__}" in result.output

    def test_invalid_settings_exit_code(self, monkeypatch: pytest.MonkeyPatch):
        """Test invalid configuration exits with status 1."""
        monkeypatch.setenv("GITOPS_LOG_LEVEL", "LOUD")

        result = cli_runner.invoke(cli.app, ["render", "-o", "."])

        assert result.exit_code == 1

    def test_help_lists_commands(self):
        """Test every command is registered."""
        result = cli_runner.invoke(cli.app, ["--help"])

        assert result.exit_code == 0
        for command in ["up", "down", "render", "set-image", "deploy", "status", "verify"]:
            assert command in result.output


@pytest.mark.unit
class TestUp:
    """Tests for `gitops-demo up`."""

    def test_prints_summary(self, bootstrapper: MagicMock):
        """Test a fresh setup prints credentials and next steps."""
        bootstrapper.return_value.run.return_value = BootstrapResult(
            cluster="gitops-demo",
            context="kind-gitops-demo",
            username="admin",
            password="initial-pass",
            cluster_info="Kubernetes control plane is running",
            nodes="gitops-demo-control-plane Ready",
        )

        result = cli_runner.invoke(cli.app, ["up"])

        assert result.exit_code == 0
        assert "Setup Complete!" in result.output
        assert "Cluster: gitops-demo" in result.output
        assert "Username: admin" in result.output
        assert "Password: initial-pass" in result.output
        assert "Access ArgoCD UI" in result.output
        assert "kubectl apply -f argocd-application.yaml" in result.output
        assert "kind delete cluster --name gitops-demo" in result.output

    def test_reused_cluster(self, bootstrapper: MagicMock):
        """Test declining recreation exits 0 without a summary."""
        bootstrapper.return_value.run.return_value = BootstrapResult(
            cluster="gitops-demo",
            context="kind-gitops-demo",
            reused=True,
            cluster_info="Kubernetes control plane is running",
        )

        result = cli_runner.invoke(cli.app, ["up"])

        assert result.exit_code == 0
        assert "Using existing cluster" in result.output
        assert "Kubernetes control plane is running" in result.output
        assert "Setup Complete!" not in result.output

    def test_missing_tool(self, bootstrapper: MagicMock):
        """Test a missing prerequisite exits 1 with the install hint."""
        bootstrapper.return_value.run.side_effect = MissingDependencyError(
            "kind", "brew install kind"
        )

        result = cli_runner.invoke(cli.app, ["up"])

        assert result.exit_code == 1
        assert "kind is not installed" in result.output
        assert "brew install kind" in result.output

    def test_step_failure(self, bootstrapper: MagicMock):
        """Test a failed step exits 1."""
        bootstrapper.return_value.run.side_effect = BootstrapError("ArgoCD did not become ready")

        result = cli_runner.invoke(cli.app, ["up"])

        assert result.exit_code == 1
        assert "ArgoCD did not become ready" in result.output

    def test_yes_flag_reaches_guard(self, bootstrapper: MagicMock):
        """Test --yes builds a guard that confirms without a terminal."""
        bootstrapper.return_value.run.return_value = BootstrapResult(
            cluster="gitops-demo", context="kind-gitops-demo", reused=True
        )

        cli_runner.invoke(cli.app, ["up", "--yes"])

        guard = bootstrapper.call_args.args[1]
        structlog.reset_defaults()
        assert guard.confirm(guard.recreate_cluster("gitops-demo")) is True

    def test_guard_without_terminal_declines(self, bootstrapper: MagicMock):
        """Test the default guard never confirms when stdin is not a terminal."""
        bootstrapper.return_value.run.return_value = BootstrapResult(
            cluster="gitops-demo", context="kind-gitops-demo", reused=True
        )

        cli_runner.invoke(cli.app, ["up"])

        guard = bootstrapper.call_args.args[1]
        structlog.reset_defaults()
        assert guard.confirm(guard.recreate_cluster("gitops-demo")) is False


@pytest.mark.unit
class TestDown:
    """Tests for `gitops-demo down`."""

    def test_deleted(self, bootstrapper: MagicMock):
        """Test a confirmed deletion is reported."""
        bootstrapper.return_value.teardown.return_value = True

        result = cli_runner.invoke(cli.app, ["down", "-y"])

        assert result.exit_code == 0
        assert "Cluster 'gitops-demo' deleted" in result.output

    def test_left_untouched(self, bootstrapper: MagicMock):
        """Test a declined or missing cluster is reported."""
        bootstrapper.return_value.teardown.return_value = False

        result = cli_runner.invoke(cli.app, ["down"])

        assert result.exit_code == 0
        assert "left untouched" in result.output


@pytest.mark.unit
class TestRender:
    """Tests for `gitops-demo render`."""

    def test_writes_manifests(self, tmp_path: Path):
        """Test all manifests are written below the output directory."""
        result = cli_runner.invoke(cli.app, ["render", "--output", str(tmp_path)])

        assert result.exit_code == 0
        assert (tmp_path / "manifests" / "deployment.yaml").is_file()
        assert (tmp_path / APPLICATION_FILE).is_file()

    def test_uses_environment(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        """Test settings from the environment reach the rendered files."""
        monkeypatch.setenv("GITOPS_APP_REPO_URL", "https://github.com/me/fork.git")

        cli_runner.invoke(cli.app, ["render", "-o", str(tmp_path)])

        application = load_manifest(tmp_path / APPLICATION_FILE)
        assert application["spec"]["source"]["repoURL"] == "https://github.com/me/fork.git"


@pytest.mark.unit
class TestSetImage:
    """Tests for `gitops-demo set-image`."""

    @pytest.fixture
    def kustomization(self, tmp_path: Path) -> Path:
        path = tmp_path / "kustomization.yaml"
        path.write_text(dump_yaml(build_kustomization(AppSettings())))
        return path

    def test_updates_tag(self, kustomization: Path):
        """Test the tag is written into kustomization.yaml."""
        result = cli_runner.invoke(cli.app, ["set-image", "3f2c1ab", "-f", str(kustomization)])

        assert result.exit_code == 0
        assert load_manifest(kustomization)["images"][0]["newTag"] == "3f2c1ab"
        assert "ghcr.io/example/demo-flask-app:3f2c1ab" in result.output

    def test_new_name(self, kustomization: Path):
        """Test --new-name replaces the image name."""
        result = cli_runner.invoke(
            cli.app,
            ["set-image", "v2", "--new-name", "registry.local/demo", "-f", str(kustomization)],
        )

        assert result.exit_code == 0
        assert load_manifest(kustomization)["images"][0]["newName"] == "registry.local/demo"

    def test_invalid_tag(self, kustomization: Path):
        """Test an invalid tag exits 1 and leaves the file alone."""
        before = kustomization.read_text()

        result = cli_runner.invoke(cli.app, ["set-image", "bad tag", "-f", str(kustomization)])

        assert result.exit_code == 1
        assert kustomization.read_text() == before

    def test_missing_file(self, tmp_path: Path):
        """Test a missing kustomization exits 1."""
        result = cli_runner.invoke(
            cli.app, ["set-image", "v1", "-f", str(tmp_path / "kustomization.yaml")]
        )

        assert result.exit_code == 1

    def test_unreadable_file(self, tmp_path: Path):
        """Test a kustomization that is not UTF-8 exits 1 with a message."""
        path = tmp_path / "kustomization.yaml"
        path.write_bytes(b"\xff\xfeimages: []\n")

        result = cli_runner.invoke(cli.app, ["set-image", "v1", "-f", str(path)])

        assert result.exit_code == 1
        assert "UTF-8" in result.output


@pytest.mark.unit
class TestDeploy:
    """Tests for `gitops-demo deploy`."""

    def test_applies_built_application(self, installer: MagicMock):
        """Test the Application is built from settings when no file is given."""
        result = cli_runner.invoke(cli.app, ["deploy"])

        assert result.exit_code == 0
        manifest, namespace = installer.deploy_application.call_args.args
        assert yaml.safe_load(manifest)["kind"] == "Application"
        assert namespace == "demo-app"
        assert "Application 'demo-flask-app' applied" in result.output

    def test_applies_file(self, installer: MagicMock, tmp_path: Path):
        """Test --file applies the given manifest verbatim."""
        path = tmp_path / "app.yaml"
        path.write_text("kind: Application\n")

        result = cli_runner.invoke(cli.app, ["deploy", "--file", str(path)])

        assert result.exit_code == 0
        assert installer.deploy_application.call_args.args[0] == "kind: Application\n"

    def test_missing_file(self, installer: MagicMock, tmp_path: Path):
        """Test an unreadable manifest exits 1."""
        result = cli_runner.invoke(cli.app, ["deploy", "-f", str(tmp_path / "nope.yaml")])

        assert result.exit_code == 1
        installer.deploy_application.assert_not_called()

    def test_kubectl_failure(self, installer: MagicMock):
        """Test a failing kubectl apply exits 1."""
        installer.deploy_application.side_effect = CommandError(
            ["kubectl", "apply"], 1, "connection refused"
        )

        result = cli_runner.invoke(cli.app, ["deploy"])

        assert result.exit_code == 1
        assert "connection refused" in result.output

    def test_kubectl_missing(self, monkeypatch: pytest.MonkeyPatch):
        """Test deploy checks for kubectl first."""

        def require_tools(tools):
            raise MissingDependencyError("kubectl", "brew install kubectl")

        monkeypatch.setattr(cli, "require_tools", require_tools)

        result = cli_runner.invoke(cli.app, ["deploy"])

        assert result.exit_code == 1
        assert "kubectl is not installed" in result.output


@pytest.mark.unit
class TestStatus:
    """Tests for `gitops-demo status`."""

    def test_shows_status(self, installer: MagicMock, degraded_application: Application):
        """Test sync, health and conditions are printed."""
        installer.get_application.return_value = degraded_application

        result = cli_runner.invoke(cli.app, ["status"])

        assert result.exit_code == 0
        assert "OutOfSync" in result.output
        assert "Degraded" in result.output
        assert "[SyncError]" in result.output

    def test_missing_application(self, installer: MagicMock):
        """Test a missing Application exits 1."""
        installer.get_application.side_effect = CommandError(
            ["kubectl", "get"], 1, "applications.argoproj.io not found"
        )

        result = cli_runner.invoke(cli.app, ["status"])

        assert result.exit_code == 1


@pytest.mark.unit
class TestVerify:
    """Tests for `gitops-demo verify`."""

    @pytest.fixture
    def verify_with(self, monkeypatch: pytest.MonkeyPatch, installer: MagicMock):
        installer.admin_password.return_value = "initial-pass"
        seen = {}

        def configure(application: Application, health: HealthReport) -> dict:
            async def fake_verify(settings, password, argocd_url, app_url):
                seen.update(password=password, argocd_url=argocd_url, app_url=app_url)
                return application, health

            monkeypatch.setattr(cli, "_verify", fake_verify)
            return seen

        return configure

    def test_verified(self, verify_with, healthy_application: Application):
        """Test a synced, healthy app answering /healthz exits 0."""
        seen = verify_with(
            healthy_application,
            HealthReport(
                url="http://localhost:8081/healthz",
                ok=True,
                status_code=200,
                payload={"status": "healthy"},
            ),
        )

        result = cli_runner.invoke(cli.app, ["verify", "--no-port-forward"])

        assert result.exit_code == 0
        assert "GitOps deployment verified" in result.output
        assert seen == {
            "password": "initial-pass",
            "argocd_url": "https://localhost:8080",
            "app_url": "http://localhost:8081",
        }

    def test_degraded_application(self, verify_with, degraded_application: Application):
        """Test an unhealthy Application exits 1."""
        verify_with(
            degraded_application,
            HealthReport(url="http://localhost:8081/healthz", ok=True, status_code=200),
        )

        result = cli_runner.invoke(cli.app, ["verify", "--no-port-forward"])

        assert result.exit_code == 1
        assert "verified" not in result.output

    def test_health_endpoint_down(self, verify_with, healthy_application: Application):
        """Test an unreachable /healthz exits 1 with the error."""
        verify_with(
            healthy_application,
            HealthReport(url="http://localhost:8081/healthz", ok=False, error="connection refused"),
        )

        result = cli_runner.invoke(cli.app, ["verify", "--no-port-forward"])

        assert result.exit_code == 1
        assert "connection refused" in result.output

    def test_password_unavailable(self, installer: MagicMock):
        """Test a missing admin secret exits 1."""
        installer.admin_password.side_effect = BootstrapError("Secret not available")

        result = cli_runner.invoke(cli.app, ["verify", "--no-port-forward"])

        assert result.exit_code == 1
        assert "Secret not available" in result.output

    def test_journals_result(
        self,
        verify_with,
        healthy_application: Application,
        tmp_path: Path,
        monkeypatch: pytest.MonkeyPatch,
    ):
        """Test the verification outcome is written to the journal."""
        journal = tmp_path / "journal.log"
        monkeypatch.setenv("GITOPS_JOURNAL", str(journal))
        verify_with(
            healthy_application,
            HealthReport(url="http://localhost:8081/healthz", ok=True, status_code=200),
        )

        cli_runner.invoke(cli.app, ["verify", "--no-port-forward"])

        assert '"action": "verify"' in journal.read_text()
        assert '"result": "success"' in journal.read_text()
