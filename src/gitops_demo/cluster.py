# ABOUTME: kind cluster lifecycle for the local GitOps environment
# ABOUTME: Detects, creates and deletes the cluster through the kind CLI

"""kind cluster lifecycle."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from gitops_demo.manifests import dump_yaml
from gitops_demo.utils.shell import CommandResult, run

if TYPE_CHECKING:
    from collections.abc import Callable

    from gitops_demo.manifests import Manifest

logger = structlog.get_logger(__name__)


class KindCluster:
    """A named kind cluster."""

    def __init__(self, name: str, runner: Callable[..., CommandResult] = run) -> None:
        self.name = name
        self._run = runner

    @property
    def context(self) -> str:
        """kubeconfig context kind creates for this cluster."""
        return f"kind-{self.name}"

    def exists(self) -> bool:
        """Check ``kind get clusters`` for an exact name match."""
        result = self._run(["kind", "get", "clusters"], check=False)
        if not result.ok:
            # kind exits non-zero when the container runtime is unreachable;
            # treat that as "no cluster" and let create() report the real error
            logger.debug("kind get clusters failed", stderr=result.stderr[:200])
            return False
        return self.name in {line.strip() for line in result.stdout.splitlines()}

    def create(self, config: Manifest) -> None:
        """Create the cluster from a kind config document passed on stdin."""
        logger.info("Creating kind cluster", cluster=self.name)
        self._run(
            ["kind", "create", "cluster", "--name", self.name, "--config=-"],
            input=dump_yaml(config),
        )
        logger.info("Cluster created", cluster=self.name, context=self.context)

    def delete(self) -> None:
        logger.info("Deleting kind cluster", cluster=self.name)
        self._run(["kind", "delete", "cluster", "--name", self.name])
