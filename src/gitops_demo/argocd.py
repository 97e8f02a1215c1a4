# ABOUTME: ArgoCD installation and Application deployment through kubectl
# ABOUTME: Installs the upstream manifest, waits for readiness and reads the admin password

"""ArgoCD installation steps."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog
from tenacity import RetryError, retry, retry_if_exception_type, stop_after_attempt, wait_fixed

from gitops_demo.errors import BootstrapError, CommandError
from gitops_demo.manifests import build_namespace, dump_yaml
from gitops_demo.utils.client import Application

if TYPE_CHECKING:
    from gitops_demo.config import ArgocdSettings
    from gitops_demo.utils.shell import Kubectl

logger = structlog.get_logger(__name__)

ADMIN_SECRET = "argocd-initial-admin-secret"  # noqa: S105 - Secret resource name


class ArgocdInstaller:
    """Installs ArgoCD into a cluster and manages the demo Application."""

    def __init__(self, kubectl: Kubectl, settings: ArgocdSettings) -> None:
        self._kubectl = kubectl
        self._settings = settings

    @property
    def namespace(self) -> str:
        return self._settings.namespace

    def ensure_namespace(self, name: str | None = None) -> None:
        """Create a namespace if missing (apply is idempotent)."""
        self._kubectl.apply(dump_yaml(build_namespace(name or self.namespace)))

    def install(self) -> None:
        """Create the ArgoCD namespace and apply the upstream install manifest."""
        logger.info("Installing ArgoCD", namespace=self.namespace, url=self._settings.install_url)
        self.ensure_namespace()
        self._kubectl.apply_url(self._settings.install_url, self.namespace)

    def wait_ready(self) -> None:
        """Wait for argocd-server to become available.

        Raises:
            BootstrapError: The deployment did not become available in time.
        """
        logger.info(
            "Waiting for ArgoCD to be ready",
            deployment=self._settings.server_deployment,
            timeout=self._settings.wait_timeout_arg,
        )
        try:
            self._kubectl.wait_available(
                self._settings.server_deployment,
                self.namespace,
                self._settings.wait_timeout_arg,
            )
        except CommandError as e:
            raise BootstrapError(
                f"ArgoCD did not become ready within {self._settings.wait_timeout_arg}: {e}"
            ) from e
        logger.info("ArgoCD is ready")

    def admin_password(self) -> str:
        """Read the initial admin password, polling until the secret exists.

        Raises:
            BootstrapError: The secret did not appear within the polling window.
        """

        @retry(
            retry=retry_if_exception_type((CommandError, BootstrapError)),
            stop=stop_after_attempt(self._settings.secret_attempts),
            wait=wait_fixed(self._settings.secret_wait),
        )
        def read() -> str:
            return self._kubectl.secret_value(ADMIN_SECRET, "password", self.namespace)

        try:
            password = read()
        except RetryError as e:
            raise BootstrapError(
                f"Secret {ADMIN_SECRET} not available after "
                f"{self._settings.secret_attempts} attempts: {e.last_attempt.exception()}"
            ) from e
        logger.info("ArgoCD admin password retrieved")
        return password

    def deploy_application(self, application_yaml: str, destination_namespace: str) -> None:
        """Ensure the destination namespace and apply the Application resource."""
        self.ensure_namespace(destination_namespace)
        self._kubectl.apply(application_yaml, namespace=self.namespace)
        logger.info("Application applied", namespace=self.namespace)

    def get_application(self, name: str) -> Application:
        """Read the Application resource through kubectl."""
        data = self._kubectl.get_json("applications.argoproj.io", name, self.namespace)
        return Application.from_api_response(data)
