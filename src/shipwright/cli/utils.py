"""CLI utility functions and error handling.

Shared helpers for the shipwright CLI:
- Exit code constants
- stderr/stdout output helpers
- Table and JSON rendering
- Orchestrator construction from the global options

Errors go to stderr as plain text (or to stdout as a JSON object with
``--output json``) and the process exits with the error's ``exit_code``.

Example:
    from shipwright.cli.utils import ExitCode, error_exit

    if not batch.succeeded:
        error_exit("Apply failed", exit_code=ExitCode.PROVIDER_ERROR)
"""

from __future__ import annotations

import json
import sys
from collections.abc import Sequence
from enum import IntEnum
from typing import TYPE_CHECKING, Any

import click

from shipwright.config import load_config
from shipwright.errors import LedgerInconsistency, ShipwrightError, ValidationError
from shipwright.orchestrator import Orchestrator
from shipwright.schemas.config import OrchestratorConfig
from shipwright.store.repository import StateStore
from shipwright.telemetry.logging import configure_logging

if TYPE_CHECKING:
    from typing import NoReturn

    from shipwright.providers.base import ApprovalGate

OUTPUT_FORMATS = ["table", "json"]


class ExitCode(IntEnum):
    """Exit codes for CLI commands."""

    SUCCESS = 0
    """Command completed successfully."""

    GENERAL_ERROR = 1
    """General error (catch-all for failures)."""

    USAGE_ERROR = 2
    """Invalid usage (bad arguments, missing required options)."""

    FILE_NOT_FOUND = 3
    """Required file not found."""

    VALIDATION_ERROR = 5
    """Plan, cutover plan or configuration failed validation."""

    PROVIDER_ERROR = 8
    """Provider call failed or actions were blocked."""

    PROMOTION_IN_PROGRESS = 9
    """Another promotion holds the environment."""

    NOT_PROMOTED = 10
    """Promotion rolled back or failed, or cutover aborted."""

    LEDGER_INCONSISTENCY = 11
    """Idempotency ledger disagrees with live state; manual repair needed."""


def error(message: str, **context: str | int | bool | None) -> None:
    """Print an error message to stderr.

    Example:
        error("Plan not found", path="plan.yaml")
        # Output: Error: Plan not found (path=plan.yaml)
    """
    if context:
        context_str = ", ".join(f"{k}={v}" for k, v in context.items() if v is not None)
        full_message = f"Error: {message} ({context_str})"
    else:
        full_message = f"Error: {message}"
    click.echo(full_message, err=True)


def error_exit(
    message: str,
    exit_code: ExitCode = ExitCode.GENERAL_ERROR,
    **context: str | int | bool | None,
) -> NoReturn:
    """Print an error message to stderr and exit with ``exit_code``."""
    error(message, **context)
    sys.exit(exit_code)


def warn(message: str) -> None:
    """Print a warning message to stderr."""
    click.echo(f"Warning: {message}", err=True)


def success(message: str) -> None:
    """Print a success message to stdout."""
    click.echo(message)


def info(message: str) -> None:
    """Print a progress message to stderr (never captured with stdout)."""
    click.echo(message, err=True)


def emit_json(data: Any) -> None:
    """Write ``data`` to stdout as indented JSON."""
    click.echo(json.dumps(data, indent=2, sort_keys=True, default=str))


def format_table(headers: Sequence[str], rows: Sequence[Sequence[Any]]) -> str:
    """Render rows as a left-aligned plain-text table.

    Example:
        >>> print(format_table(["OP", "TARGET"], [["create", "Registry/staging/app-repo"]]))
        OP      TARGET
        create  Registry/staging/app-repo
    """
    cells = [[str(h) for h in headers], *[[str(c) for c in row] for row in rows]]
    widths = [max(len(row[i]) for row in cells) for i in range(len(headers))]
    lines = ["  ".join(c.ljust(w) for c, w in zip(row, widths)).rstrip() for row in cells]
    return "\n".join(lines)


def fail(exc: ShipwrightError, output: str = "table") -> NoReturn:
    """Report ``exc`` and exit with its exit code."""
    exit_code = int(exc.exit_code)
    if output == "json":
        payload: dict[str, Any] = {
            "error": str(exc),
            "error_type": type(exc).__name__,
            "exit_code": exit_code,
        }
        if isinstance(exc, ValidationError):
            payload["errors"] = exc.errors
        if isinstance(exc, LedgerInconsistency):
            payload["idempotency_key"] = exc.idempotency_key
            payload["target"] = exc.target
        emit_json(payload)
    else:
        error(str(exc))
        if isinstance(exc, ValidationError):
            for problem in exc.errors[5:]:
                click.echo(f"  - {problem}", err=True)
    sys.exit(exit_code)


def _configure(ctx: click.Context) -> OrchestratorConfig:
    options = ctx.find_root().obj or {}
    config = load_config(options.get("config_path"))
    level = options.get("log_level") or config.logging.level
    json_logs = options.get("json_logs") or config.logging.json_output
    configure_logging(log_level=level, json_output=json_logs)
    return config


def open_store(ctx: click.Context) -> StateStore:
    """Load configuration, configure logging and open the state store."""
    config = _configure(ctx)
    return StateStore(config.store.url, echo=config.store.echo)


def open_orchestrator(
    ctx: click.Context,
    *,
    approvals: ApprovalGate | None = None,
) -> Orchestrator:
    """Load configuration, configure logging and build an orchestrator.

    Uses the ``--config``, ``--log-level`` and ``--json-logs`` options of the
    root command, stored on ``ctx.obj``.
    """
    config = _configure(ctx)
    return Orchestrator.from_config(config, approvals=approvals)


__all__ = [
    "OUTPUT_FORMATS",
    "ExitCode",
    "emit_json",
    "error",
    "error_exit",
    "fail",
    "format_table",
    "info",
    "open_orchestrator",
    "open_store",
    "success",
    "warn",
]
