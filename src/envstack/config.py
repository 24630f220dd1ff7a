"""Runtime configuration with validation.

Run-level settings (region, timeouts, concurrency policy) come from the
environment and CLI flags. What to deploy lives in the deployment spec
(see models.py).
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Configuration constants with documented bounds
DEFAULT_SPEC_PATH = "envstack.yaml"

DEFAULT_STACK_TIMEOUT_SECONDS = 1800
DEFAULT_ENVIRONMENT_TIMEOUT_SECONDS = 1800
MIN_OPERATION_TIMEOUT_SECONDS = 60
MAX_OPERATION_TIMEOUT_SECONDS = 3 * 3600

DEFAULT_POLL_INTERVAL_SECONDS = 15
MIN_POLL_INTERVAL_SECONDS = 1
MAX_POLL_INTERVAL_SECONDS = 300

# Extra time the driver allows on top of a provider-side wait before giving up
EXECUTOR_GRACE_SECONDS = 60

# Limits on input sizes
MAX_SPEC_FILE_SIZE_BYTES = 1024 * 1024  # 1MB max spec file
MAX_TEMPLATE_FILE_SIZE_BYTES = 51_200  # CloudFormation TemplateBody limit
MAX_STACK_NAME_LENGTH = 128
MAX_ENVIRONMENT_NAME_LENGTH = 40

# Input validation patterns
VALID_REGION_PATTERN = r"^[a-z]{2}(-gov|-iso[a-z]*)?-[a-z]+-\d$"


@dataclass(frozen=True)
class Config:
    """Run configuration loaded from environment variables.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError immediately rather than failing mid-run.
    """

    region: str
    spec_path: Path = field(default_factory=lambda: Path(DEFAULT_SPEC_PATH))

    # Timing
    stack_timeout_seconds: int = DEFAULT_STACK_TIMEOUT_SECONDS
    environment_timeout_seconds: int = DEFAULT_ENVIRONMENT_TIMEOUT_SECONDS
    poll_interval_seconds: int = DEFAULT_POLL_INTERVAL_SECONDS

    # Behavior
    parallel_environments: bool = False
    fail_fast: bool = True

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        errors: list[str] = []

        if not self.region:
            errors.append("AWS_REGION is required")
        elif not re.match(VALID_REGION_PATTERN, self.region):
            errors.append(f"AWS_REGION must be a valid AWS region: {self.region}")

        for name, value in (
            ("STACK_TIMEOUT", self.stack_timeout_seconds),
            ("ENVIRONMENT_TIMEOUT", self.environment_timeout_seconds),
        ):
            if not (MIN_OPERATION_TIMEOUT_SECONDS <= value <= MAX_OPERATION_TIMEOUT_SECONDS):
                errors.append(
                    f"{name} must be between {MIN_OPERATION_TIMEOUT_SECONDS} "
                    f"and {MAX_OPERATION_TIMEOUT_SECONDS} seconds"
                )

        poll = self.poll_interval_seconds
        if not (MIN_POLL_INTERVAL_SECONDS <= poll <= MAX_POLL_INTERVAL_SECONDS):
            errors.append(
                f"POLL_INTERVAL must be between {MIN_POLL_INTERVAL_SECONDS} "
                f"and {MAX_POLL_INTERVAL_SECONDS} seconds"
            )

        if not self.spec_path.exists():
            errors.append(f"Deployment spec does not exist: {self.spec_path}")

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @classmethod
    def from_env(cls, **overrides: object) -> Config:
        """Load configuration from environment variables.

        Keyword overrides (e.g. from CLI flags) win over the environment when
        they are not None.

        Environment Variables:
            AWS_REGION / AWS_DEFAULT_REGION: Target region
            ENVSTACK_SPEC: Path to the deployment spec (default: ./envstack.yaml)
            STACK_TIMEOUT: Max seconds to wait for a stack operation (default: 1800)
            ENVIRONMENT_TIMEOUT: Max seconds to wait for an environment (default: 1800)
            POLL_INTERVAL: Seconds between status polls (default: 15)
            PARALLEL_ENVIRONMENTS: Reconcile environments concurrently (default: false)
            FAIL_FAST: Stop after an environment creation failure (default: true)
        """

        def get_int(key: str, default: int) -> int:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return int(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be an integer: {value}") from e

        def get_bool(key: str, default: bool) -> bool:
            value = os.environ.get(key, "").lower()
            if not value:
                return default
            return value in ("true", "1", "yes")

        values: dict[str, object] = {
            "region": os.environ.get("AWS_REGION") or os.environ.get("AWS_DEFAULT_REGION", ""),
            "spec_path": Path(os.environ.get("ENVSTACK_SPEC", DEFAULT_SPEC_PATH)),
            "stack_timeout_seconds": get_int("STACK_TIMEOUT", DEFAULT_STACK_TIMEOUT_SECONDS),
            "environment_timeout_seconds": get_int(
                "ENVIRONMENT_TIMEOUT", DEFAULT_ENVIRONMENT_TIMEOUT_SECONDS
            ),
            "poll_interval_seconds": get_int("POLL_INTERVAL", DEFAULT_POLL_INTERVAL_SECONDS),
            "parallel_environments": get_bool("PARALLEL_ENVIRONMENTS", False),
            "fail_fast": get_bool("FAIL_FAST", True),
        }

        for key, value in overrides.items():
            if key not in values:
                raise ConfigurationError(f"Unknown configuration override: {key}")
            if value is not None:
                values[key] = Path(value) if key == "spec_path" else value  # type: ignore[arg-type]

        return cls(**values)  # type: ignore[arg-type]
