"""Top-level reconciliation driver.

Single pass, no retries across the pipeline:

1. Dependency check (credentials, template)
2. Application registration (check, then init)
3. Stack apply (create or update, wait for terminal state)
4. Output resolution (hard gate for environment work)
5. Environment reconcile in declared order

A fatal error at any stage up to and including output resolution aborts
before any environment is touched. Blocking provider calls run in the
default executor, bounded by asyncio.wait_for.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, TypeVar

from .config import EXECUTOR_GRACE_SECONDS, Config
from .environments import EnvironmentOrchestrator, EnvironmentResult
from .errors import (
    ApplicationInitError,
    DependencyMissingError,
    ProviderError,
    ProvisionError,
    ReconcileError,
)
from .models import DeploymentSpec
from .outputs import OutputResolver
from .probe import ResourceProbe
from .provider import CloudProvider
from .resources import OutputSet, ResourceKind, StackDescriptor, StackState
from .spec_loader import SpecLoadError, load_template, resolve_template_path
from .stacks import StackApplyResult, StackProvisioner

logger = logging.getLogger(__name__)

T = TypeVar("T")

EXIT_SUCCESS = 0
EXIT_FATAL = 1
EXIT_DEPENDENCY_MISSING = 2
EXIT_PARTIAL = 3


class Operation(str, Enum):
    """Invocable operations."""

    PROVISION_INFRASTRUCTURE = "provision-infrastructure"
    RECONCILE_ENVIRONMENTS = "reconcile-environments"
    RECONCILE = "reconcile"


@dataclass
class RunReport:
    """Result of a single driver run."""

    operation: Operation
    application: str
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None
    stack: StackApplyResult | None = None
    outputs: OutputSet | None = None
    environments: list[EnvironmentResult] = field(default_factory=list)
    error: Exception | None = None

    @property
    def duration_seconds(self) -> float:
        """Calculate duration in seconds."""
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    @property
    def failed_environments(self) -> list[EnvironmentResult]:
        return [r for r in self.environments if r.error is not None]

    @property
    def success(self) -> bool:
        """Every mandatory step and every environment succeeded."""
        return self.error is None and not self.failed_environments

    @property
    def partial(self) -> bool:
        """Mandatory steps succeeded but some environments did not."""
        return self.error is None and bool(self.failed_environments)

    @property
    def exit_code(self) -> int:
        if isinstance(self.error, DependencyMissingError):
            return EXIT_DEPENDENCY_MISSING
        if self.error is not None:
            return EXIT_FATAL
        if self.failed_environments:
            return EXIT_PARTIAL
        return EXIT_SUCCESS


class ReconciliationDriver:
    """Drives one reconciliation run against a CloudProvider.

    Stateless between runs: everything is re-derived by probing.
    """

    def __init__(self, config: Config, spec: DeploymentSpec, provider: CloudProvider) -> None:
        self._config = config
        self._spec = spec
        self._provider = provider

        self._probe = ResourceProbe(provider)
        self._resolver = OutputResolver(provider)
        self._provisioner = StackProvisioner(
            provider,
            probe=self._probe,
            resolver=self._resolver,
            timeout_seconds=config.stack_timeout_seconds,
        )
        self._orchestrator = EnvironmentOrchestrator(
            provider,
            application=spec.application,
            platform=spec.platform,
            probe=self._probe,
            timeout_seconds=config.environment_timeout_seconds,
            vpc_output=spec.outputs.vpc,
            subnet_outputs=spec.outputs.subnets,
            variable_name=spec.environment_variable,
            extra_tags=spec.tags,
        )

        self._template_body: str | None = None

    @property
    def config(self) -> Config:
        return self._config

    @property
    def spec(self) -> DeploymentSpec:
        return self._spec

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    async def provision_infrastructure(self) -> RunReport:
        """Apply the stack and resolve its outputs."""
        report = RunReport(Operation.PROVISION_INFRASTRUCTURE, self._spec.application)

        async def steps() -> None:
            await self._run_blocking(
                self.check_dependencies, True, operation_name="Dependency check"
            )
            await self._apply_stack(report)

        return await self._execute(report, steps)

    async def reconcile_environments(self) -> RunReport:
        """Initialize the application and reconcile every environment.

        Outputs are read back from the existing stack, which must be Complete.
        """
        report = RunReport(Operation.RECONCILE_ENVIRONMENTS, self._spec.application)

        async def steps() -> None:
            await self._run_blocking(
                self.check_dependencies, False, operation_name="Dependency check"
            )
            await self._run_blocking(self.ensure_application, operation_name="Application init")
            report.outputs = await self._run_blocking(
                self.resolve_existing_outputs, operation_name="Output resolution"
            )
            await self._reconcile_environments(report)

        return await self._execute(report, steps)

    async def run(self) -> RunReport:
        """Full sequence: application, stack, outputs, environments."""
        report = RunReport(Operation.RECONCILE, self._spec.application)

        async def steps() -> None:
            await self._run_blocking(
                self.check_dependencies, True, operation_name="Dependency check"
            )
            await self._run_blocking(self.ensure_application, operation_name="Application init")
            await self._apply_stack(report)
            await self._reconcile_environments(report)

        return await self._execute(report, steps)

    # -------------------------------------------------------------------------
    # Steps (blocking; run in executor)
    # -------------------------------------------------------------------------

    def check_dependencies(self, require_template: bool = True) -> None:
        """Verify external capabilities before any provider mutation.

        Raises:
            DependencyMissingError: If the template or credentials are unavailable.
        """
        if require_template:
            template_path = resolve_template_path(self._config.spec_path, self._spec.stack.template)
            try:
                self._template_body = load_template(template_path)
            except SpecLoadError as e:
                raise DependencyMissingError(str(e), resource=str(template_path)) from e

        try:
            identity = self._provider.check_credentials()
        except ProviderError as e:
            raise DependencyMissingError(f"Cloud credentials unavailable: {e}") from e

        logger.info("Dependencies satisfied", extra={"identity": identity})

    def ensure_application(self) -> None:
        """Register the application if it does not exist yet."""
        name = self._spec.application
        probe = self._probe.exists(ResourceKind.APPLICATION, name)
        if probe.exists:
            logger.info("Application already registered", extra={"application": name})
            return

        logger.info("Registering application", extra={"application": name})
        try:
            self._provider.create_application(name)
        except ProviderError as e:
            raise ApplicationInitError(
                f"Failed to register application '{name}': {e}", resource=name
            ) from e

    def stack_descriptor(self) -> StackDescriptor:
        if self._template_body is None:
            raise RuntimeError("Template not loaded; call check_dependencies() first")
        return self._spec.stack.to_descriptor(self._template_body)

    def resolve_existing_outputs(self) -> OutputSet:
        """Resolve outputs of the already-provisioned stack.

        Raises:
            ProvisionError: If the stack is absent or not Complete.
            MissingOutputError: If a required output is absent or empty.
        """
        name = self._spec.stack.name
        probe = self._probe.exists(ResourceKind.STACK, name)
        if not probe.exists:
            raise ProvisionError(
                f"Stack '{name}' does not exist; run provision-infrastructure first",
                resource=name,
            )
        if probe.state != StackState.COMPLETE:
            state = probe.state.value if probe.state is not None else "unknown"
            raise ProvisionError(f"Stack '{name}' is not Complete (state: {state})", resource=name)
        return self._resolver.resolve(name, self._spec.required_outputs)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    async def _apply_stack(self, report: RunReport) -> None:
        descriptor = self.stack_descriptor()
        try:
            report.stack = await self._run_blocking(
                self._provisioner.apply_stack,
                descriptor,
                self._spec.required_outputs,
                timeout_seconds=self._config.stack_timeout_seconds * 2 + EXECUTOR_GRACE_SECONDS,
                operation_name="Stack apply",
            )
        except TimeoutError as e:
            raise ProvisionError(
                f"Stack '{descriptor.name}' did not settle in time", resource=descriptor.name
            ) from e
        report.outputs = report.stack.outputs

    async def _reconcile_environments(self, report: RunReport) -> None:
        # Output gate: never attempt an environment without resolved outputs
        if report.outputs is None:
            raise ProvisionError("Stack outputs were not resolved", resource=self._spec.stack.name)

        report.environments = await self._orchestrator.reconcile_all(
            self._spec.environments,
            report.outputs,
            parallel=self._config.parallel_environments,
            fail_fast=self._config.fail_fast,
        )

        fatal = next((r.error for r in report.environments if r.fatal), None)
        if fatal is not None:
            report.error = fatal

    async def _execute(self, report: RunReport, steps: Callable[[], Any]) -> RunReport:
        logger.info(
            "Starting run",
            extra={
                "operation": report.operation.value,
                "application": self._spec.application,
                "stack": self._spec.stack.name,
                "environments": self._spec.environments,
                "region": self._config.region,
            },
        )

        try:
            await steps()
        except DependencyMissingError as e:
            report.error = e
            logger.error("Dependency missing", extra={"error": str(e)})
        except ReconcileError as e:
            report.error = e
            logger.error(
                "Fatal reconciliation error",
                extra={"error": str(e), "error_type": type(e).__name__, "resource": e.resource},
            )
        except TimeoutError as e:
            report.error = e
            logger.error("Operation timed out", extra={"error": str(e)})
        except Exception as e:
            report.error = e
            logger.exception("Unexpected error during reconciliation")
        finally:
            report.end_time = datetime.now(UTC)

        self._log_result(report)
        return report

    async def _run_blocking(
        self,
        fn: Callable[..., T],
        *args: Any,
        timeout_seconds: float | None = None,
        operation_name: str,
    ) -> T:
        """Run a blocking call in the executor with an optional timeout.

        Raises:
            TimeoutError: If the call exceeds timeout_seconds.
        """
        loop = asyncio.get_running_loop()
        future = loop.run_in_executor(None, functools.partial(fn, *args))

        if timeout_seconds is None:
            return await future

        try:
            return await asyncio.wait_for(future, timeout=timeout_seconds)
        except TimeoutError:
            logger.error(
                f"{operation_name} timed out",
                extra={"timeout_seconds": timeout_seconds},
            )
            raise

    def _log_result(self, report: RunReport) -> None:
        extra: dict[str, Any] = {
            "operation": report.operation.value,
            "application": report.application,
            "duration_seconds": report.duration_seconds,
            "exit_code": report.exit_code,
        }
        if report.stack is not None:
            extra["stack_action"] = report.stack.action.value
        if report.environments:
            extra["environments"] = {
                r.name: (r.state.value if r.state else r.action.value) for r in report.environments
            }

        if report.error is not None:
            extra["error"] = str(report.error)
            logger.error("Reconciliation failed", extra=extra)
        elif report.partial:
            extra["failed"] = [r.name for r in report.failed_environments]
            logger.warning("Reconciliation partially succeeded", extra=extra)
        else:
            logger.info("Reconciliation result", extra=extra)
