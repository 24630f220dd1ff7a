"""Per-environment reconciliation.

For each logical environment name:

1. Probe existence of {application}-{environment}
2. Present: deploy the latest staged application version (non-fatal on failure)
3. Absent: create it inside the stack's VPC and subnets (fatal on failure)
4. First creation only: tag it with Environment/Application

Environments are processed in declared order. Once the shared OutputSet is
resolved it is read-only, so reconciles may also run concurrently.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from enum import Enum

from .config import DEFAULT_ENVIRONMENT_TIMEOUT_SECONDS
from .errors import EnvCreateError, EnvUpdateError, ProbeError, ProviderError, ReconcileError
from .probe import ResourceProbe
from .provider import CloudProvider
from .resources import (
    DEFAULT_ENVIRONMENT_VARIABLE,
    EnvironmentDescriptor,
    EnvironmentState,
    OutputSet,
    ResourceKind,
    TagSet,
    environment_name,
)
from .tagging import TagApplier, TagResult

logger = logging.getLogger(__name__)

DEFAULT_ENVIRONMENTS: tuple[str, ...] = ("dev", "staging", "production")


class EnvironmentAction(str, Enum):
    """What reconcile did for an environment."""

    CREATE = "create"
    DEPLOY = "deploy"
    SKIPPED = "skipped"


@dataclass
class EnvironmentResult:
    """Outcome of reconciling one environment."""

    environment: str
    name: str
    action: EnvironmentAction
    state: EnvironmentState | None = None
    tag_result: TagResult | None = None
    error: ReconcileError | None = None

    @property
    def success(self) -> bool:
        return self.error is None and self.state == EnvironmentState.READY

    @property
    def tagged(self) -> bool:
        return self.tag_result is not None and self.tag_result.applied

    @property
    def fatal(self) -> bool:
        return self.error is not None and self.error.fatal


class EnvironmentOrchestrator:
    """Decides create-vs-deploy per environment and drives it to Ready."""

    def __init__(
        self,
        provider: CloudProvider,
        application: str,
        platform: str,
        probe: ResourceProbe | None = None,
        tag_applier: TagApplier | None = None,
        timeout_seconds: float = DEFAULT_ENVIRONMENT_TIMEOUT_SECONDS,
        vpc_output: str = "VPCId",
        subnet_outputs: tuple[str, str] = ("SubnetA", "SubnetB"),
        variable_name: str = DEFAULT_ENVIRONMENT_VARIABLE,
        extra_tags: Mapping[str, str] | None = None,
    ) -> None:
        self._provider = provider
        self._application = application
        self._platform = platform
        self._probe = probe or ResourceProbe(provider)
        self._tag_applier = tag_applier or TagApplier(provider)
        self._timeout_seconds = timeout_seconds
        self._vpc_output = vpc_output
        self._subnet_outputs = subnet_outputs
        self._variable_name = variable_name
        self._extra_tags = dict(extra_tags or {})

    @property
    def required_outputs(self) -> list[str]:
        """Output keys every environment creation consumes."""
        return [self._vpc_output, *self._subnet_outputs]

    def reconcile(self, environment: str, outputs: OutputSet) -> EnvironmentResult:
        """Reconcile a single environment.

        Returns:
            EnvironmentResult; deploy failures are carried on the result.

        Raises:
            EnvCreateError: If the environment was absent and creation failed.
            ProbeError: If existence could not be determined.
        """
        name = environment_name(self._application, environment)
        probe = self._probe.exists(ResourceKind.ENVIRONMENT, name)

        if probe.exists:
            return self._redeploy(environment, name, probe.state)
        return self._create(environment, name, outputs)

    def _redeploy(
        self,
        environment: str,
        name: str,
        current: EnvironmentState | None,
    ) -> EnvironmentResult:
        result = EnvironmentResult(environment, name, EnvironmentAction.DEPLOY, state=current)

        try:
            if current is not None and current.in_progress:
                logger.info(
                    "Environment busy, waiting before deploy",
                    extra={"environment": name, "state": current.value},
                )
                settled = self._provider.wait_for_terminal(
                    ResourceKind.ENVIRONMENT, name, self._timeout_seconds
                )
                if not settled.succeeded:
                    cause = "timed out" if settled.timed_out else "failed"
                    result.state = settled.state
                    result.error = EnvUpdateError(
                        f"'{name}' did not settle before deploy ({cause}): "
                        f"{settled.reason or 'no reason given'}",
                        resource=name,
                    )
                    logger.error(
                        "Environment not ready for deploy",
                        extra={"environment": name, "reason": settled.reason},
                    )
                    return result

            logger.info("Deploying latest version", extra={"environment": name})
            handle = self._provider.deploy_latest_version(self._application, name)
            outcome = self._provider.wait_for_terminal(
                ResourceKind.ENVIRONMENT, handle, self._timeout_seconds
            )
        except ProviderError as e:
            result.state = EnvironmentState.FAILED
            result.error = EnvUpdateError(f"Deploy to '{name}' failed: {e}", resource=name)
            logger.error("Environment deploy failed", extra={"environment": name, "error": str(e)})
            return result

        result.state = outcome.state
        if not outcome.succeeded:
            cause = "timed out" if outcome.timed_out else "failed"
            result.error = EnvUpdateError(
                f"Deploy to '{name}' {cause}: {outcome.reason or 'no reason given'}",
                resource=name,
            )
            logger.error(
                "Environment deploy failed",
                extra={
                    "environment": name,
                    "reason": outcome.reason,
                    "timed_out": outcome.timed_out,
                },
            )
            return result

        logger.info("Environment redeployed", extra={"environment": name})
        return result

    def _create(self, environment: str, name: str, outputs: OutputSet) -> EnvironmentResult:
        descriptor = EnvironmentDescriptor.from_outputs(
            application=self._application,
            environment=environment,
            platform=self._platform,
            outputs=outputs,
            vpc_key=self._vpc_output,
            subnet_keys=self._subnet_outputs,
            variable_name=self._variable_name,
        )

        logger.info(
            "Creating environment",
            extra={
                "environment": name,
                "platform": descriptor.platform,
                "vpc_id": descriptor.vpc_id,
                "subnets": list(descriptor.subnets),
            },
        )

        try:
            handle = self._provider.create_environment(descriptor)
            outcome = self._provider.wait_for_terminal(
                ResourceKind.ENVIRONMENT, handle, self._timeout_seconds
            )
        except ProviderError as e:
            raise EnvCreateError(f"Creating '{name}' failed: {e}", resource=name) from e

        if not outcome.succeeded:
            cause = "timed out" if outcome.timed_out else "failed"
            raise EnvCreateError(
                f"Creating '{name}' {cause}: {outcome.reason or 'no reason given'}",
                resource=name,
            )

        result = EnvironmentResult(
            environment, name, EnvironmentAction.CREATE, state=EnvironmentState.READY
        )
        result.tag_result = self._tag_new_environment(environment, name)
        logger.info("Environment created", extra={"environment": name, "tagged": result.tagged})
        return result

    def _tag_new_environment(self, environment: str, name: str) -> TagResult:
        try:
            arn = self._probe.exists(ResourceKind.ENVIRONMENT, name).handle
        except ProbeError as e:
            logger.warning(
                "Could not resolve environment handle for tagging",
                extra={"environment": name, "error": str(e)},
            )
            arn = None

        tags = TagSet.for_environment(self._application, environment, self._extra_tags)
        return self._tag_applier.apply_tags(arn, tags)

    async def reconcile_all(
        self,
        environments: Sequence[str],
        outputs: OutputSet,
        *,
        parallel: bool = False,
        fail_fast: bool = True,
    ) -> list[EnvironmentResult]:
        """Reconcile every environment, returning results in declared order.

        Sequentially, a creation failure stops the run before the next
        environment when fail_fast is set; later environments are reported
        as skipped. In parallel mode fail-fast holds back environments not yet
        started; since every environment starts at once, none is ever held
        back and each runs to completion or failure on its own.
        """
        loop = asyncio.get_running_loop()

        if parallel:
            tasks = [
                loop.run_in_executor(None, self._reconcile_captured, env, outputs)
                for env in environments
            ]
            return list(await asyncio.gather(*tasks))

        results: list[EnvironmentResult] = []
        for index, env in enumerate(environments):
            result = await loop.run_in_executor(None, self._reconcile_captured, env, outputs)
            results.append(result)

            if result.fatal and fail_fast:
                remaining = environments[index + 1 :]
                if remaining:
                    logger.error(
                        "Stopping after environment creation failure",
                        extra={"failed": result.name, "not_attempted": list(remaining)},
                    )
                for skipped in remaining:
                    results.append(
                        EnvironmentResult(
                            skipped,
                            environment_name(self._application, skipped),
                            EnvironmentAction.SKIPPED,
                        )
                    )
                break

        return results

    def _reconcile_captured(self, environment: str, outputs: OutputSet) -> EnvironmentResult:
        """Run reconcile, turning fatal per-environment errors into a result."""
        try:
            return self.reconcile(environment, outputs)
        except (EnvCreateError, ProbeError) as e:
            name = environment_name(self._application, environment)
            logger.error(
                "Environment reconcile failed", extra={"environment": name, "error": str(e)}
            )
            if isinstance(e, EnvCreateError):
                return EnvironmentResult(
                    environment,
                    name,
                    EnvironmentAction.CREATE,
                    state=EnvironmentState.FAILED,
                    error=e,
                )
            # Existence unknown, nothing was attempted
            return EnvironmentResult(environment, name, EnvironmentAction.SKIPPED, error=e)
