"""Runtime wiring: logging setup and operation dispatch."""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime

from .config import Config
from .provider import AwsProvider, CloudProvider
from .reconciler import Operation, ReconciliationDriver, RunReport
from .spec_loader import load_spec

# LogRecord attributes that are not user-supplied extra fields
_RESERVED_RECORD_KEYS = frozenset({
    "name",
    "msg",
    "args",
    "created",
    "filename",
    "funcName",
    "levelname",
    "levelno",
    "lineno",
    "module",
    "msecs",
    "pathname",
    "process",
    "processName",
    "relativeCreated",
    "stack_info",
    "exc_info",
    "exc_text",
    "thread",
    "threadName",
    "taskName",
    "message",
})


class JsonFormatter(logging.Formatter):
    """Format logs as JSON for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }

        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_KEYS:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable format with extra fields appended as key=value."""

    def __init__(self) -> None:
        super().__init__("%(asctime)s %(levelname)-7s %(name)s: %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        extras = [
            f"{key}={value}"
            for key, value in record.__dict__.items()
            if key not in _RESERVED_RECORD_KEYS and key != "asctime"
        ]
        if extras:
            line = f"{line} [{' '.join(extras)}]"
        return line


def setup_logging(fmt: str = "json", level: int = logging.INFO) -> None:
    """Configure root logging with JSON (default) or text output on stdout."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(TextFormatter() if fmt == "text" else JsonFormatter())

    root_logger = logging.getLogger()
    for existing in list(root_logger.handlers):
        root_logger.removeHandler(existing)
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    # Reduce noise from the AWS SDK
    logging.getLogger("boto3").setLevel(logging.WARNING)
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def build_driver(config: Config, provider: CloudProvider | None = None) -> ReconciliationDriver:
    """Load the deployment spec and wire a driver for it.

    Raises:
        SpecLoadError: If the spec cannot be loaded.
    """
    spec = load_spec(config.spec_path)
    if provider is None:
        provider = AwsProvider(config.region, poll_interval_seconds=config.poll_interval_seconds)
    return ReconciliationDriver(config, spec, provider)


async def run_operation(
    operation: Operation,
    config: Config,
    provider: CloudProvider | None = None,
) -> RunReport:
    """Run one invocable operation end to end."""
    driver = build_driver(config, provider)

    match operation:
        case Operation.PROVISION_INFRASTRUCTURE:
            return await driver.provision_infrastructure()
        case Operation.RECONCILE_ENVIRONMENTS:
            return await driver.reconcile_environments()
        case Operation.RECONCILE:
            return await driver.run()
        case _:
            raise ValueError(f"Unsupported operation: {operation}")


def format_summary(report: RunReport) -> list[str]:
    """Human-readable summary lines for the end of a run."""
    lines: list[str] = []

    if report.stack is not None:
        lines.append(f"stack {report.stack.stack_name}: {report.stack.action.value}")

    for result in report.environments:
        status = result.state.value if result.state is not None else "not attempted"
        line = f"environment {result.name}: {result.action.value} -> {status}"
        if result.tagged:
            line += " (tagged)"
        if result.error is not None:
            line += f" ({result.error})"
        lines.append(line)

    if report.error is not None:
        lines.append(f"FAILED: {report.error}")
    elif report.partial:
        lines.append(f"PARTIAL: {len(report.failed_environments)} environment(s) failed")
    else:
        lines.append("OK")

    return lines
