# ABOUTME: Orchestrates the local cluster bootstrap end to end
# ABOUTME: Prerequisites, cluster (re)creation, ArgoCD install and credential retrieval

"""
Bootstrap orchestration.

=============================================================================
STEPS
=============================================================================

    1. Prerequisites     kind and kubectl on PATH, else MissingDependencyError
    2. Existing cluster  ask "recreate?" (default No)
                           No  -> print cluster-info, return reused result
                           Yes -> delete and continue
    3. Create cluster    kind create cluster --config=-
    4. Verify cluster    kubectl cluster-info, kubectl get nodes
    5. Install ArgoCD    namespace + upstream install.yaml
    6. Wait              deployment/argocd-server condition=available
    7. Credentials       argocd-initial-admin-secret, base64-decoded

Every step that changes the outside world lands in the action journal. Any
failure propagates as a GitopsDemoError subclass; nothing is retried here
beyond the secret polling done by ArgocdInstaller.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

import structlog

from gitops_demo.argocd import ArgocdInstaller
from gitops_demo.cluster import KindCluster
from gitops_demo.config import Settings
from gitops_demo.errors import GitopsDemoError
from gitops_demo.manifests import APPLICATION_FILE, build_kind_config
from gitops_demo.utils.logging import ActionJournal
from gitops_demo.utils.safety import ConfirmationGuard
from gitops_demo.utils.shell import Kubectl, require_tools

logger = structlog.get_logger(__name__)

REQUIRED_TOOLS = ("kind", "kubectl")


@dataclass
class BootstrapResult:
    """What the operator needs after a bootstrap run."""

    cluster: str
    context: str
    reused: bool = False
    username: str | None = None
    password: str | None = None
    cluster_info: str = ""
    nodes: str = ""


@dataclass
class NextStep:
    """A titled group of follow-up commands."""

    title: str
    commands: list[str] = field(default_factory=list)


def next_steps(settings: Settings) -> list[NextStep]:
    """Follow-up instructions printed after a successful bootstrap."""
    argo = settings.argocd
    app = settings.app
    return [
        NextStep(
            "Access ArgoCD UI",
            [
                f"kubectl port-forward svc/{argo.server_deployment} -n {argo.namespace} "
                f"{argo.ui_local_port}:443",
                f"open https://localhost:{argo.ui_local_port}",
            ],
        ),
        NextStep(
            "Deploy the application",
            [
                f"kubectl create namespace {app.namespace}",
                f"kubectl apply -f {APPLICATION_FILE}",
                "# or: gitops-demo deploy",
            ],
        ),
        NextStep(
            "Check application status",
            [
                f"kubectl get applications -n {argo.namespace}",
                f"kubectl get pods -n {app.namespace}",
                "# or: gitops-demo status",
            ],
        ),
        NextStep(
            "Access the application",
            [
                f"kubectl port-forward -n {app.namespace} service/{app.name} "
                f"{app.local_port}:{app.service_port}",
                f"curl http://localhost:{app.local_port}{app.health_path}",
            ],
        ),
        NextStep(
            "Delete the cluster later",
            [f"kind delete cluster --name {settings.cluster.name}", "# or: gitops-demo down"],
        ),
    ]


class Bootstrapper:
    """Runs the bootstrap steps against one kind cluster."""

    def __init__(
        self,
        settings: Settings,
        guard: ConfirmationGuard,
        journal: ActionJournal | None = None,
        cluster: KindCluster | None = None,
        kubectl: Kubectl | None = None,
        check_tools: Callable[[Iterable[str]], None] = require_tools,
    ) -> None:
        self._settings = settings
        self._guard = guard
        self._journal = journal or ActionJournal(settings.journal)
        self._cluster = cluster or KindCluster(settings.cluster.name)
        self._kubectl = kubectl or Kubectl(self._cluster.context)
        self._check_tools = check_tools

    @property
    def kubectl(self) -> Kubectl:
        return self._kubectl

    def check_prerequisites(self) -> None:
        self._check_tools(REQUIRED_TOOLS)

    def run(self) -> BootstrapResult:
        """Run every bootstrap step.

        Raises:
            MissingDependencyError: kind or kubectl missing
            CommandError: A kind/kubectl command failed
            BootstrapError: ArgoCD did not become ready or has no admin secret
        """
        self.check_prerequisites()
        name = self._cluster.name
        result = BootstrapResult(cluster=name, context=self._cluster.context)

        if self._cluster.exists():
            logger.warning("Cluster already exists", cluster=name)
            if not self._guard.confirm(ConfirmationGuard.recreate_cluster(name)):
                self._journal.log_skipped("recreate_cluster", name, "not confirmed")
                result.reused = True
                result.cluster_info = self._kubectl.cluster_info()
                logger.info("Using existing cluster", cluster=name)
                return result
            self._step("delete_cluster", name, self._cluster.delete)

        self._step(
            "create_cluster",
            name,
            lambda: self._cluster.create(build_kind_config(self._settings.cluster)),
        )

        result.cluster_info = self._kubectl.cluster_info()
        result.nodes = self._kubectl.get_nodes()

        installer = ArgocdInstaller(self._kubectl, self._settings.argocd)
        namespace = self._settings.argocd.namespace
        self._step("install_argocd", namespace, installer.install)
        self._step("wait_argocd", namespace, installer.wait_ready)

        result.username = self._settings.argocd.username
        result.password = installer.admin_password()
        logger.info("Bootstrap complete", cluster=name)
        return result

    def teardown(self) -> bool:
        """Delete the cluster after confirmation.

        Returns:
            True if the cluster was deleted, False if it did not exist or
            deletion was not confirmed.
        """
        self.check_prerequisites()
        name = self._cluster.name
        if not self._cluster.exists():
            logger.info("Cluster not found", cluster=name)
            self._journal.log_skipped("delete_cluster", name, "not found")
            return False
        if not self._guard.confirm(ConfirmationGuard.delete_cluster(name)):
            self._journal.log_skipped("delete_cluster", name, "not confirmed")
            return False
        self._step("delete_cluster", name, self._cluster.delete)
        return True

    def _step(self, action: str, target: str, func: Callable[[], object]) -> None:
        try:
            func()
        except GitopsDemoError as e:
            self._journal.log_error(action, target, str(e))
            raise
        self._journal.log_success(action, target)
