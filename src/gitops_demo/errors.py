# ABOUTME: Exception hierarchy for the gitops-demo bootstrap tool
# ABOUTME: Every failure the CLI reports derives from GitopsDemoError

"""Structured errors raised by the bootstrap steps and caught at the CLI boundary."""

from __future__ import annotations

from collections.abc import Sequence


class GitopsDemoError(Exception):
    """Base class for all errors reported by gitops-demo."""


class MissingDependencyError(GitopsDemoError):
    """A required command-line tool is not installed."""

    def __init__(self, tool: str, hint: str | None = None) -> None:
        self.tool = tool
        self.hint = hint
        super().__init__(str(self))

    def __str__(self) -> str:
        base = f"{self.tool} is not installed"
        if self.hint:
            base += f"\nInstall it with: {self.hint}"
        return base


class CommandError(GitopsDemoError):
    """An external command exited non-zero or timed out."""

    def __init__(self, args: Sequence[str], returncode: int | None, stderr: str = "") -> None:
        self.args_ = list(args)
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(str(self))

    def __str__(self) -> str:
        cmd = " ".join(self.args_)
        if self.returncode is None:
            base = f"Command timed out: {cmd}"
        else:
            base = f"Command failed ({self.returncode}): {cmd}"
        stderr = self.stderr.strip()
        if stderr:
            base += f" - {stderr[:300]}"
        return base


class BootstrapError(GitopsDemoError):
    """A bootstrap step could not complete."""


class ManifestError(GitopsDemoError):
    """A manifest could not be read, validated or patched."""
