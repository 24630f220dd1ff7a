"""Infrastructure stack provisioning.

Idempotent apply of the shared infrastructure stack:

1. Probe current state
2. Absent: create and wait for a terminal state
3. Present: wait out any in-flight operation, then update
4. "No updates to perform" is success, unless the stack was already Failed
5. Read outputs back once the stack is Complete

Any Failed terminal state (timeouts included) is fatal for the whole run:
infrastructure failure blocks all dependent environment work.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .config import DEFAULT_STACK_TIMEOUT_SECONDS
from .errors import ProviderError, ProvisionError
from .outputs import OutputResolver
from .probe import ResourceProbe
from .provider import NO_CHANGES, CloudProvider
from .resources import OutputSet, ResourceKind, StackDescriptor, StackState

logger = logging.getLogger(__name__)


class StackAction(str, Enum):
    """What apply_stack ended up doing."""

    CREATE = "create"
    UPDATE = "update"
    NO_CHANGES = "no_changes"


@dataclass
class StackApplyResult:
    """Result of a stack create/update."""

    stack_name: str
    action: StackAction
    state: StackState
    stack_id: str | None = None
    outputs: OutputSet | None = None


class StackProvisioner:
    """Creates or updates the infrastructure stack and blocks until done."""

    def __init__(
        self,
        provider: CloudProvider,
        probe: ResourceProbe | None = None,
        resolver: OutputResolver | None = None,
        timeout_seconds: float = DEFAULT_STACK_TIMEOUT_SECONDS,
    ) -> None:
        self._provider = provider
        self._probe = probe or ResourceProbe(provider)
        self._resolver = resolver or OutputResolver(provider)
        self._timeout_seconds = timeout_seconds

    def apply_stack(
        self,
        descriptor: StackDescriptor,
        required_outputs: Sequence[str] = (),
    ) -> StackApplyResult:
        """Converge the stack to the descriptor.

        Args:
            descriptor: Desired stack state.
            required_outputs: Output keys that must be present once Complete.

        Returns:
            StackApplyResult with the resolved outputs.

        Raises:
            ProvisionError: If the create/update failed or timed out.
            MissingOutputError: If a required output is absent after Complete.
            ProbeError: If the stack could not be probed.
        """
        probe = self._probe.exists(ResourceKind.STACK, descriptor.name)

        if not probe.exists:
            action = StackAction.CREATE
            logger.info("Creating stack", extra={"stack": descriptor.name})
            handle = self._invoke("create", descriptor, self._provider.create_stack)
            self._wait(descriptor.name, handle, action)
        else:
            if probe.state is not None and probe.state.in_progress:
                # Let the in-flight operation settle before issuing our own
                logger.info(
                    "Stack busy, waiting before update",
                    extra={"stack": descriptor.name, "state": probe.state.value},
                )
                self._wait(descriptor.name, probe.handle or descriptor.name, StackAction.UPDATE)

            logger.info("Updating stack", extra={"stack": descriptor.name})
            update = self._invoke("update", descriptor, self._provider.update_stack)

            if update is NO_CHANGES:
                if probe.state == StackState.FAILED:
                    # Nothing to retry with; the stack stays Failed
                    raise ProvisionError(
                        f"Stack '{descriptor.name}' is Failed and has no pending changes: "
                        f"{probe.status_reason or 'no reason given'}",
                        resource=descriptor.name,
                    )
                action = StackAction.NO_CHANGES
                handle = probe.handle or descriptor.name
                logger.info("Stack already up to date", extra={"stack": descriptor.name})
            else:
                action = StackAction.UPDATE
                handle = update
                self._wait(descriptor.name, handle, action)

        outputs = self._resolver.resolve(descriptor.name, required_outputs)

        logger.info(
            "Stack converged",
            extra={"stack": descriptor.name, "action": action.value, "outputs": len(outputs)},
        )
        return StackApplyResult(
            stack_name=descriptor.name,
            action=action,
            state=StackState.COMPLETE,
            stack_id=handle,
            outputs=outputs,
        )

    def _invoke(
        self,
        verb: str,
        descriptor: StackDescriptor,
        operation: Callable[[StackDescriptor], Any],
    ) -> Any:
        try:
            return operation(descriptor)
        except ProviderError as e:
            raise ProvisionError(
                f"Failed to {verb} stack '{descriptor.name}': {e}",
                resource=descriptor.name,
            ) from e

    def _wait(self, stack_name: str, handle: str, action: StackAction) -> None:
        try:
            outcome = self._provider.wait_for_terminal(
                ResourceKind.STACK, handle, self._timeout_seconds
            )
        except ProviderError as e:
            raise ProvisionError(
                f"Lost track of stack '{stack_name}' during {action.value}: {e}",
                resource=stack_name,
            ) from e

        if outcome.state != StackState.COMPLETE:
            cause = "timed out" if outcome.timed_out else "failed"
            reason = outcome.reason or "no reason given"
            raise ProvisionError(
                f"Stack '{stack_name}' {action.value} {cause}: {reason}",
                resource=stack_name,
            )
