# ABOUTME: Safety utilities for the gitops-demo bootstrap tool
# ABOUTME: Implements the confirmation pattern guarding destructive cluster operations

"""Confirmation guard for destructive operations such as deleting a cluster."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from collections.abc import Callable

logger = structlog.get_logger(__name__)


@dataclass
class ConfirmationRequired:
    """Request for consent before a destructive operation."""

    operation: str
    target: str
    impact: str
    question: str
    details: dict[str, Any] = field(default_factory=dict)

    def format_message(self) -> str:
        """Format the confirmation request shown above the prompt."""
        lines = [
            f"CONFIRMATION REQUIRED: {self.operation}",
            "",
            f"Target: {self.target}",
            f"Impact: {self.impact}",
        ]

        if self.details:
            lines.append("")
            lines.append("Details:")
            for key, value in self.details.items():
                lines.append(f"  {key}: {value}")

        return "\n".join(lines)


class ConfirmationGuard:
    """Decides whether a destructive operation may proceed.

    The default answer is always No: a non-interactive session without
    ``assume_yes`` never deletes anything.
    """

    def __init__(
        self,
        prompt: Callable[[str], bool] | None = None,
        assume_yes: bool = False,
        interactive: bool = True,
    ) -> None:
        """Initialize confirmation guard.

        Args:
            prompt: Callable asking the question and returning the answer
            assume_yes: Treat every request as confirmed (``--yes``)
            interactive: Whether a human can answer the prompt
        """
        self._prompt = prompt
        self._assume_yes = assume_yes
        self._interactive = interactive

    def confirm(self, request: ConfirmationRequired) -> bool:
        """Ask for consent.

        Args:
            request: The operation awaiting consent

        Returns:
            True only when the operation was explicitly confirmed
        """
        if self._assume_yes:
            logger.info("Confirmation assumed", operation=request.operation, target=request.target)
            return True

        if not self._interactive or self._prompt is None:
            logger.warning(
                "Confirmation unavailable, defaulting to no",
                operation=request.operation,
                target=request.target,
            )
            return False

        answer = bool(self._prompt(f"{request.format_message()}\n\n{request.question}"))
        logger.debug("Confirmation answered", operation=request.operation, answer=answer)
        return answer

    @staticmethod
    def recreate_cluster(cluster: str) -> ConfirmationRequired:
        """Build the request asked when the cluster already exists."""
        return ConfirmationRequired(
            operation="recreate_cluster",
            target=cluster,
            impact="The existing cluster and everything deployed in it will be DELETED",
            question="Do you want to delete and recreate it?",
        )

    @staticmethod
    def delete_cluster(cluster: str) -> ConfirmationRequired:
        """Build the request asked before ``gitops-demo down``."""
        return ConfirmationRequired(
            operation="delete_cluster",
            target=cluster,
            impact="The cluster and everything deployed in it will be PERMANENTLY DELETED",
            question=f"Delete cluster '{cluster}'?",
        )
