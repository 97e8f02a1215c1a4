# ABOUTME: Configuration management for the gitops-demo bootstrap tool
# ABOUTME: Handles environment variables for the cluster, ArgoCD and the demo application

"""
Configuration management using pydantic-settings.

=============================================================================
WHAT IS THIS FILE?
=============================================================================

This module holds every tunable value of the bootstrap tool. It:

1. READS environment variables (like GITOPS_CLUSTER_NAME, GITOPS_APP_REPO_URL)
2. VALIDATES them (ports in range, repository URLs Git can clone, log levels)
3. PROVIDES typed access to settings for the CLI, the manifest builders and
   the bootstrap steps

Defaults reproduce the classic local setup: a kind cluster named
"gitops-demo", ArgoCD in the "argocd" namespace and the demo Flask app in
"demo-app".

=============================================================================
ARCHITECTURE: FOUR CONFIGURATION CLASSES
=============================================================================

1. ClusterSettings (GITOPS_CLUSTER_*): the kind cluster
   - Name, host port mappings, node labels

2. ArgocdSettings (GITOPS_ARGOCD_*): the ArgoCD installation
   - Namespace, install manifest URL, readiness timeout, secret polling

3. AppSettings (GITOPS_APP_*): the demo application and its Application CR
   - Git source, image name and tag, ports, sync policy flags

4. Settings (GITOPS_*): main container
   - Nests the three classes above
   - Log level, JSON logging, action journal path

=============================================================================
ENVIRONMENT VARIABLE MAPPING
=============================================================================

Cluster:
    GITOPS_CLUSTER_NAME             -> kind cluster name (default: gitops-demo)
    GITOPS_CLUSTER_HTTP_HOST_PORT   -> host port mapped to node port 80 (8080)
    GITOPS_CLUSTER_HTTPS_HOST_PORT  -> host port mapped to node port 443 (8443)

ArgoCD:
    GITOPS_ARGOCD_NAMESPACE         -> install namespace (default: argocd)
    GITOPS_ARGOCD_INSTALL_URL       -> upstream install.yaml
    GITOPS_ARGOCD_WAIT_TIMEOUT      -> seconds to wait for argocd-server (300)

Application:
    GITOPS_APP_REPO_URL             -> Git repository ArgoCD watches
    GITOPS_APP_TARGET_REVISION      -> branch ArgoCD tracks (default: main)
    GITOPS_APP_IMAGE / _IMAGE_TAG   -> image written into kustomization.yaml

Top level:
    GITOPS_LOG_LEVEL                -> DEBUG, INFO, WARNING, ERROR, CRITICAL
    GITOPS_LOG_JSON                 -> JSON log lines instead of console output
    GITOPS_JOURNAL                  -> file receiving the action journal
    GITOPS_ENV_FILE                 -> optional .env file read by load_settings()
"""

from __future__ import annotations

import os
from pathlib import Path  # noqa: TC003 - Required at runtime for Pydantic
from typing import Annotated

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ARGOCD_STABLE_INSTALL_URL = (
    "https://raw.githubusercontent.com/argoproj/argo-cd/stable/manifests/install.yaml"
)

Port = Annotated[int, Field(ge=1, le=65535)]


# =============================================================================
# CLUSTER SETTINGS
# =============================================================================


class ClusterSettings(BaseSettings):
    """
    Settings for the local kind cluster.

    The cluster has a single control-plane node. Ports 80 and 443 of that
    node are published on the host so an ingress controller labelled with
    ``ingress-ready=true`` can be reached from the workstation.
    """

    model_config = SettingsConfigDict(env_prefix="GITOPS_CLUSTER_", extra="ignore")

    name: str = Field(default="gitops-demo", min_length=1, description="kind cluster name")
    # kind derives the kubeconfig context from this: "kind-<name>"

    http_host_port: Port = Field(default=8080, description="Host port for node port 80")
    https_host_port: Port = Field(default=8443, description="Host port for node port 443")

    node_labels: str = Field(
        default="ingress-ready=true",
        description="Labels passed to the kubelet of the control-plane node",
    )

    @property
    def context(self) -> str:
        """kubectl context kind writes for this cluster."""
        return f"kind-{self.name}"


# =============================================================================
# ARGOCD SETTINGS
# =============================================================================


class ArgocdSettings(BaseSettings):
    """
    Settings for installing ArgoCD into the cluster.

    WHY POLL FOR THE ADMIN SECRET?
    ------------------------------
    ArgoCD writes ``argocd-initial-admin-secret`` shortly after the server
    becomes available, not at the same instant. Instead of sleeping a fixed
    amount of time the installer polls ``secret_attempts`` times,
    ``secret_wait`` seconds apart.
    """

    model_config = SettingsConfigDict(env_prefix="GITOPS_ARGOCD_", extra="ignore")

    namespace: str = Field(default="argocd", description="Namespace ArgoCD is installed into")

    install_url: str = Field(
        default=ARGOCD_STABLE_INSTALL_URL,
        description="Upstream ArgoCD install manifest",
    )

    server_deployment: str = Field(
        default="argocd-server",
        description="Deployment whose availability marks ArgoCD as ready",
    )

    wait_timeout: int = Field(default=300, ge=1, description="Readiness timeout in seconds")
    # Fresh installs usually take 2-3 minutes on a laptop

    secret_attempts: int = Field(default=10, ge=1, description="Admin secret polling attempts")
    secret_wait: float = Field(default=1.0, ge=0, description="Seconds between secret polls")

    username: str = Field(default="admin", description="Initial ArgoCD admin user")
    ui_local_port: Port = Field(default=8080, description="Local port for the UI port-forward")

    @property
    def wait_timeout_arg(self) -> str:
        """Timeout formatted for ``kubectl wait --timeout``."""
        return f"{self.wait_timeout}s"


# =============================================================================
# APPLICATION SETTINGS
# =============================================================================


class AppSettings(BaseSettings):
    """
    Settings for the demo application and its ArgoCD Application resource.

    The sync policy flags map one to one onto the Application spec:

        prune             -> spec.syncPolicy.automated.prune
        self_heal         -> spec.syncPolicy.automated.selfHeal
        create_namespace  -> spec.syncPolicy.syncOptions: [CreateNamespace=true]

    The image fields feed the ``images`` entry of kustomization.yaml, which
    a CI pipeline later patches with ``gitops-demo set-image``.
    """

    model_config = SettingsConfigDict(env_prefix="GITOPS_APP_", extra="ignore")

    # -------------------------------------------------------------------------
    # GIT SOURCE
    # -------------------------------------------------------------------------

    name: str = Field(default="demo-flask-app", min_length=1, description="Application name")
    namespace: str = Field(default="demo-app", description="Destination namespace")
    project: str = Field(default="default", description="ArgoCD project")

    repo_url: str = Field(
        default="https://github.com/example/gitops-demo.git",
        description="Git repository ArgoCD watches",
    )
    target_revision: str = Field(default="main", description="Branch ArgoCD tracks")
    path: str = Field(default="manifests", description="Manifest directory inside the repo")

    destination_server: str = Field(
        default="https://kubernetes.default.svc",
        description="Destination cluster API server",
    )

    # -------------------------------------------------------------------------
    # CONTAINER
    # -------------------------------------------------------------------------

    image: str = Field(default="ghcr.io/example/demo-flask-app", description="Container image")
    image_tag: str = Field(default="latest", description="Container image tag")
    replicas: int = Field(default=2, ge=0, description="Deployment replica count")
    container_port: Port = Field(default=5000, description="Port the Flask app listens on")
    service_port: Port = Field(default=80, description="Service port")
    local_port: Port = Field(default=8081, description="Local port for the app port-forward")
    health_path: str = Field(default="/healthz", description="Health endpoint path")

    # -------------------------------------------------------------------------
    # SYNC POLICY
    # -------------------------------------------------------------------------

    prune: bool = Field(default=True, description="Delete resources removed from Git")
    self_heal: bool = Field(default=True, description="Revert manual changes in the cluster")
    create_namespace: bool = Field(default=True, description="Let ArgoCD create the namespace")

    @field_validator("repo_url")
    @classmethod
    def validate_repo_url(cls, v: str) -> str:
        """
        Ensure the repository URL is something ArgoCD can clone.

        Accepted forms:
            https://github.com/org/repo.git
            http://gitea.local/org/repo.git
            git@github.com:org/repo.git
            ssh://git@github.com/org/repo.git
        """
        v = v.strip()
        if not v.startswith(("https://", "http://", "git@", "ssh://")):
            raise ValueError(f"Unsupported repository URL: {v!r}")
        return v

    @field_validator("health_path")
    @classmethod
    def validate_health_path(cls, v: str) -> str:
        """Health path always starts with a slash."""
        return v if v.startswith("/") else f"/{v}"


# =============================================================================
# MAIN SETTINGS
# =============================================================================


class Settings(BaseSettings):
    """
    Top-level configuration container.

    USAGE:
    ------
        settings = load_settings()
        print(settings.cluster.name)         # "gitops-demo"
        print(settings.app.target_revision)  # "main"

    Nested values can also be set through the top-level prefix with a double
    underscore, e.g. ``GITOPS_APP__IMAGE_TAG=v1.2.3``.
    """

    model_config = SettingsConfigDict(
        env_prefix="GITOPS_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    cluster: ClusterSettings = Field(default_factory=ClusterSettings)
    argocd: ArgocdSettings = Field(default_factory=ArgocdSettings)
    app: AppSettings = Field(default_factory=AppSettings)

    log_level: Annotated[str, Field(pattern=r"^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")] = Field(
        default="INFO",
        description="Logging level",
    )
    log_json: bool = Field(default=False, description="Emit JSON log lines")

    journal: Path | None = Field(default=None, description="Action journal file")
    # When unset the journal goes through structlog to stderr


def load_settings() -> Settings:
    """
    Load settings from the environment with validation.

    If ``GITOPS_ENV_FILE`` is set, additional variables are read from that
    file. Nested values use the double underscore form there as well:

        GITOPS_APP__REPO_URL=https://github.com/me/gitops-demo.git
        GITOPS_APP__IMAGE_TAG=v1.2.3

    Raises:
        pydantic.ValidationError: If configuration is invalid.
    """
    return Settings(_env_file=os.environ.get("GITOPS_ENV_FILE"))
