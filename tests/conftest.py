# ABOUTME: Pytest fixtures and configuration for gitops-demo tests
# ABOUTME: Provides settings, a recording command runner and sample Applications

import os
from dataclasses import dataclass
from pathlib import Path

import pytest
import structlog

from gitops_demo.config import ArgocdSettings, Settings
from gitops_demo.errors import CommandError
from gitops_demo.utils.client import Application
from gitops_demo.utils.shell import CommandResult

REPO_ROOT = Path(__file__).resolve().parents[1]


@dataclass
class RecordedCall:
    """One command seen by FakeRunner."""

    args: list[str]
    input: str | None
    check: bool

    @property
    def cmd(self) -> str:
        return " ".join(self.args)


class FakeRunner:
    """Stand-in for gitops_demo.utils.shell.run that records commands.

    Rules match on a substring of the joined command line; the first matching
    rule wins. A rule added with ``once=True`` is consumed by its first match.
    Unmatched commands succeed with empty output.
    """

    def __init__(self) -> None:
        self.calls: list[RecordedCall] = []
        self._rules: list[dict] = []

    def on(
        self,
        fragment: str,
        stdout: str = "",
        returncode: int = 0,
        stderr: str = "",
        once: bool = False,
    ) -> "FakeRunner":
        self._rules.append(
            {
                "fragment": fragment,
                "stdout": stdout,
                "returncode": returncode,
                "stderr": stderr,
                "once": once,
            }
        )
        return self

    def __call__(self, args, input=None, check=True, capture=True, timeout=None):
        argv = list(args)
        call = RecordedCall(argv, input, check)
        self.calls.append(call)

        rule = next((r for r in self._rules if r["fragment"] in call.cmd), None)
        if rule is None:
            return CommandResult(argv, 0)
        if rule["once"]:
            self._rules.remove(rule)

        if check and rule["returncode"] != 0:
            raise CommandError(argv, rule["returncode"], rule["stderr"])
        return CommandResult(argv, rule["returncode"], rule["stdout"], rule["stderr"])

    @property
    def commands(self) -> list[str]:
        return [call.cmd for call in self.calls]


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep GITOPS_* variables of the developer's shell out of the tests."""
    for key in list(os.environ):
        if key.startswith("GITOPS_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture(autouse=True)
def reset_structlog() -> None:
    """Undo logging configuration left behind by earlier tests."""
    structlog.reset_defaults()


@pytest.fixture
def settings() -> Settings:
    """Default settings with instant secret polling."""
    return Settings(argocd=ArgocdSettings(secret_attempts=3, secret_wait=0))


@pytest.fixture
def runner() -> FakeRunner:
    """Create a recording command runner."""
    return FakeRunner()


@pytest.fixture
def repo_root() -> Path:
    """Repository root holding the committed manifests."""
    return REPO_ROOT


@pytest.fixture
def journal_path(tmp_path: Path) -> Path:
    return tmp_path / "journal.log"


@pytest.fixture
def healthy_application() -> Application:
    """Create a synced and healthy demo application."""
    return Application(
        name="demo-flask-app",
        namespace="argocd",
        project="default",
        repo_url="https://github.com/example/gitops-demo.git",
        path="manifests",
        target_revision="main",
        destination_server="https://kubernetes.default.svc",
        destination_namespace="demo-app",
        sync_status="Synced",
        health_status="Healthy",
        sync_policy={"automated": {"prune": True, "selfHeal": True}},
    )


@pytest.fixture
def degraded_application() -> Application:
    """Create an out-of-sync, degraded demo application."""
    return Application(
        name="demo-flask-app",
        namespace="argocd",
        project="default",
        repo_url="https://github.com/example/gitops-demo.git",
        path="manifests",
        target_revision="main",
        destination_server="https://kubernetes.default.svc",
        destination_namespace="demo-app",
        sync_status="OutOfSync",
        health_status="Degraded",
        operation_state={
            "phase": "Failed",
            "message": "ImagePullBackOff: ghcr.io/example/demo-flask-app:missing",
        },
        conditions=[{"type": "SyncError", "message": "Failed to sync"}],
    )
