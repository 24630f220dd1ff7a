"""Error taxonomy for reconciliation runs.

Fatal errors unwind to the driver and end the run with a non-zero exit
code. Non-fatal errors are collected on per-environment results and the run
continues with the next independent unit of work.
"""

from __future__ import annotations


class ReconcileError(Exception):
    """Base class for all reconciliation errors."""

    fatal: bool = True

    def __init__(self, message: str, resource: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.resource = resource


class DependencyMissingError(ReconcileError):
    """A required external capability is unavailable.

    Raised before any provider call is made.
    """


class ProbeError(ReconcileError):
    """Probing a resource failed for a reason other than "not found"."""


class ProvisionError(ReconcileError):
    """Stack create/update failed or timed out."""


class MissingOutputError(ReconcileError):
    """A required stack output is absent or empty."""

    def __init__(self, key: str, stack_name: str) -> None:
        super().__init__(
            f"Stack '{stack_name}' is missing required output '{key}'",
            resource=stack_name,
        )
        self.key = key


class ApplicationInitError(ReconcileError):
    """Registering the application with the provider failed."""


class EnvCreateError(ReconcileError):
    """Creating an environment failed.

    Fatal for that environment; with fail-fast enabled no later environment
    in the declared order is attempted.
    """


class EnvUpdateError(ReconcileError):
    """Redeploying an existing environment failed."""

    fatal = False


class TagError(ReconcileError):
    """Tagging failed. Always logged, never raised past the tag applier."""

    fatal = False


class ProviderError(Exception):
    """Raised by a provider adapter when a cloud API call fails."""

    def __init__(self, message: str, code: str | None = None, operation: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.operation = operation

    def __str__(self) -> str:
        if self.code:
            return f"{self.code}: {self.message}"
        return self.message
