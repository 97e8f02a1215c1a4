# ABOUTME: Structured logging with run IDs for the gitops-demo bootstrap tool
# ABOUTME: Implements the action journal recording every cluster-changing step

"""
Structured logging with run IDs and an action journal.

=============================================================================
WHAT IS THIS FILE?
=============================================================================

This module provides the observability of the bootstrap tool:

1. STRUCTURED LOGGING: structlog events with consistent fields, rendered as
   colored console lines for humans or JSON lines for CI logs.

2. RUN IDs: one short identifier per CLI invocation, attached to every log
   line, so the output of concurrent CI jobs can be told apart.

3. ACTION JOURNAL: a record of each step that changes the outside world
   (cluster created, cluster deleted, ArgoCD installed, Application applied).

=============================================================================
WHY LOG TO STDERR?
=============================================================================

The CLI prints its human-facing summary (credentials, next steps) on stdout.
Log lines go to stderr so that ``gitops-demo up > summary.txt`` captures the
summary only, and JSON logs can be piped separately.

=============================================================================
EXAMPLE JOURNAL ENTRIES
=============================================================================

    {"timestamp": "2026-01-15T10:30:00+00:00", "run_id": "a1b2c3d4",
     "action": "create_cluster", "target": "gitops-demo", "result": "success"}

    {"timestamp": "2026-01-15T10:30:05+00:00", "run_id": "a1b2c3d4",
     "action": "delete_cluster", "target": "gitops-demo", "result": "skipped",
     "details": {"reason": "not confirmed"}}
"""

from __future__ import annotations

import json
import logging
import sys
import uuid
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from collections.abc import MutableMapping
    from pathlib import Path


# =============================================================================
# RUN ID MANAGEMENT
# =============================================================================

# Each CLI invocation gets its own id; ContextVar keeps it task-local for the
# async verification client as well.
run_id: ContextVar[str] = ContextVar("run_id", default="")


def get_run_id() -> str:
    """
    Get the current run ID, generating one if none is set.

    Returns:
        8-character hex string taken from a UUID4.
    """
    rid = run_id.get()
    if not rid:
        rid = str(uuid.uuid4())[:8]
        run_id.set(rid)
    return rid


def set_run_id(rid: str) -> None:
    """
    Set the run ID for the current context.

    Passing an empty string makes the next get_run_id() call generate a
    fresh one. CI jobs may pass their own build number here.
    """
    run_id.set(rid)


def add_run_id(
    logger: structlog.types.WrappedLogger,  # noqa: ARG001 - Required by structlog Processor API
    method_name: str,  # noqa: ARG001 - Required by structlog Processor API
    event_dict: MutableMapping[str, Any],
) -> MutableMapping[str, Any]:
    """
    structlog processor adding ``run_id`` to every event.

    Args:
        logger: The wrapped logger (unused, part of the processor signature)
        method_name: The log method name (unused, part of the processor signature)
        event_dict: Event being processed

    Returns:
        The event_dict with "run_id" set.
    """
    event_dict["run_id"] = get_run_id()
    return event_dict


# =============================================================================
# LOGGING CONFIGURATION
# =============================================================================


def configure_logging(
    level: str = "INFO",
    json_output: bool = False,
) -> None:
    """
    Configure structured logging.

    Call once at CLI startup; calling again reconfigures (the CLI does this
    after settings are loaded and the final level is known).

    PROCESSOR PIPELINE:
    -------------------
    1. merge_contextvars: values bound with structlog.contextvars
    2. add_log_level: "level" field
    3. TimeStamper: ISO 8601 timestamp
    4. add_run_id: our run identifier
    5. Renderer: JSON or colored console text

    Args:
        level: One of DEBUG, INFO, WARNING, ERROR, CRITICAL. Unknown values
               fall back to INFO.
        json_output: If True, emit JSON lines; otherwise console output.
    """
    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        add_run_id,
    ]

    if json_output:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper(), logging.INFO)
        ),
        context_class=dict,
        # stderr keeps stdout free for the CLI summary
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )


# =============================================================================
# ACTION JOURNAL
# =============================================================================


class ActionJournal:
    """
    Journal of the actions the bootstrap performs against the outside world.

    WHAT WE RECORD:
    ---------------
    - timestamp: When it happened (UTC ISO 8601)
    - run_id: CLI invocation identifier
    - action: What step ran ("create_cluster", "install_argocd", ...)
    - target: What it acted on (cluster name, namespace, application)
    - result: "success", "skipped" or "error"
    - details: Extra context (reason, error text, parameters)

    TWO OUTPUT MODES:
    -----------------
    1. FILE: JSON lines appended to ``log_path``
    2. LOG: structlog "journal" events through the configured pipeline (stderr)
    """

    def __init__(self, log_path: Path | None = None) -> None:
        """
        Initialize the journal.

        Args:
            log_path: File to append JSON lines to, or None to log through
                      structlog. Entries are appended, never truncated.
        """
        self._log_path = log_path
        self._logger = structlog.get_logger("journal")

    def record(
        self,
        action: str,
        target: str,
        result: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        """
        Record one action.

        Args:
            action: Step name, e.g. "create_cluster"
            target: Resource acted upon, e.g. "gitops-demo"
            result: "success", "skipped" or "error"
            details: Optional additional context
        """
        entry: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "run_id": get_run_id(),
            "action": action,
            "target": target,
            "result": result,
        }
        if details:
            entry["details"] = details

        if self._log_path:
            with self._log_path.open("a") as f:
                f.write(json.dumps(entry) + "\n")
        else:
            self._logger.info(
                "journal",
                action=action,
                target=target,
                result=result,
                details=details,
            )

    def log_success(
        self,
        action: str,
        target: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Record a completed action."""
        self.record(action, target, "success", details)

    def log_skipped(self, action: str, target: str, reason: str) -> None:
        """Record an action that was deliberately not performed."""
        self.record(action, target, "skipped", {"reason": reason})

    def log_error(self, action: str, target: str, error: str) -> None:
        """Record an action that failed."""
        self.record(action, target, "error", {"error": error})
