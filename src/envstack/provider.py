"""Cloud provider capability interface and its AWS adapter.

The reconciliation core only talks to the CloudProvider protocol below.
AwsProvider binds it to CloudFormation (the infrastructure stack) and
Elastic Beanstalk (applications and environments) via boto3.

All calls are blocking; the driver runs them in an executor.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping
from enum import Enum
from typing import Any, Protocol

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .config import DEFAULT_POLL_INTERVAL_SECONDS
from .errors import ProviderError
from .resources import (
    EnvironmentDescriptor,
    EnvironmentState,
    ProbeResult,
    ResourceKind,
    StackDescriptor,
    StackState,
    TerminalOutcome,
)

logger = logging.getLogger(__name__)

# CloudFormation reports "no diff" on update as a ValidationError
NO_UPDATES_MESSAGE = "No updates are to be performed"

STACK_COMPLETE_STATUSES: frozenset[str] = frozenset({
    "CREATE_COMPLETE",
    "UPDATE_COMPLETE",
    "IMPORT_COMPLETE",
})

STACK_CREATE_STATUSES: frozenset[str] = frozenset({
    "CREATE_IN_PROGRESS",
    "REVIEW_IN_PROGRESS",
})

# Elastic Beanstalk statuses for an environment mid-operation
ENVIRONMENT_BUSY_STATUSES: frozenset[str] = frozenset({
    "Updating",
    "Aborting",
    "LinkingFrom",
    "LinkingTo",
})

# Environments on their way out; probing treats them as absent
ENVIRONMENT_DELETED_STATUSES: frozenset[str] = frozenset({"Terminating", "Terminated"})


class UpdateSignal(str, Enum):
    """Signals an update may return instead of an operation handle."""

    NO_CHANGES = "no_changes"


NO_CHANGES = UpdateSignal.NO_CHANGES


class CloudProvider(Protocol):
    """Typed operations the reconciliation core consumes."""

    def check_credentials(self) -> str:
        """Verify credentials resolve; return the caller identity."""
        ...

    def describe_resource(self, kind: ResourceKind, name: str) -> ProbeResult: ...

    def create_stack(self, descriptor: StackDescriptor) -> str: ...

    def update_stack(self, descriptor: StackDescriptor) -> str | UpdateSignal: ...

    def wait_for_terminal(
        self, kind: ResourceKind, handle: str, timeout_seconds: float
    ) -> TerminalOutcome: ...

    def list_outputs(self, stack_name: str) -> dict[str, str]: ...

    def create_application(self, name: str) -> None: ...

    def create_environment(self, descriptor: EnvironmentDescriptor) -> str: ...

    def deploy_latest_version(self, application: str, environment_name: str) -> str: ...

    def update_tags(self, handle: str, tags: Mapping[str, str]) -> None: ...


def stack_state_from_status(status: str) -> StackState:
    """Map a CloudFormation stack status onto StackState."""
    if status == "DELETE_COMPLETE":
        return StackState.ABSENT
    if status in STACK_COMPLETE_STATUSES:
        return StackState.COMPLETE
    if status in STACK_CREATE_STATUSES:
        return StackState.CREATE_IN_PROGRESS
    if status.endswith("_IN_PROGRESS"):
        return StackState.UPDATE_IN_PROGRESS
    # *_FAILED, ROLLBACK_COMPLETE, UPDATE_ROLLBACK_COMPLETE, ...
    return StackState.FAILED


def environment_state_from_status(status: str, health: str | None = None) -> EnvironmentState:
    """Map an Elastic Beanstalk status/health pair onto EnvironmentState."""
    if status == "Launching":
        return EnvironmentState.CREATING
    if status in ENVIRONMENT_BUSY_STATUSES:
        return EnvironmentState.DEPLOYING
    if status == "Ready":
        if health == "Red":
            return EnvironmentState.FAILED
        return EnvironmentState.READY
    # Terminating / Terminated
    return EnvironmentState.FAILED


def _client_error_details(error: ClientError) -> tuple[str, str]:
    details = error.response.get("Error", {})
    return details.get("Code", ""), details.get("Message", str(error))


def _state_name(state: StackState | EnvironmentState | None) -> str | None:
    return state.value if state is not None else None


class AwsProvider:
    """CloudProvider backed by CloudFormation and Elastic Beanstalk."""

    def __init__(
        self,
        region: str,
        poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
        session: Any | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if poll_interval_seconds <= 0:
            raise ValueError("poll_interval_seconds must be positive")

        self._region = region
        self._poll_interval = poll_interval_seconds
        self._sleep = sleep
        self._session = session or boto3.Session(region_name=region)
        self._cfn = self._session.client("cloudformation", region_name=region)
        self._eb = self._session.client("elasticbeanstalk", region_name=region)

        # environment name -> version label a deploy is converging to
        self._pending_versions: dict[str, str] = {}

    @property
    def region(self) -> str:
        return self._region

    def _call(self, operation: str, fn: Callable[..., Any], **kwargs: Any) -> Any:
        """Invoke a boto3 operation, translating failures into ProviderError."""
        try:
            return fn(**kwargs)
        except ClientError as e:
            code, message = _client_error_details(e)
            raise ProviderError(message, code=code, operation=operation) from e
        except BotoCoreError as e:
            raise ProviderError(str(e), code=type(e).__name__, operation=operation) from e

    # -------------------------------------------------------------------------
    # Dependency check
    # -------------------------------------------------------------------------

    def check_credentials(self) -> str:
        if self._session.get_credentials() is None:
            raise ProviderError(
                "No AWS credentials could be resolved",
                code="NoCredentials",
                operation="check_credentials",
            )
        sts = self._session.client("sts", region_name=self._region)
        identity = self._call("GetCallerIdentity", sts.get_caller_identity)
        return identity.get("Arn", identity.get("Account", ""))

    # -------------------------------------------------------------------------
    # Probing
    # -------------------------------------------------------------------------

    def describe_resource(self, kind: ResourceKind, name: str) -> ProbeResult:
        match kind:
            case ResourceKind.STACK:
                return self._describe_stack(name)
            case ResourceKind.ENVIRONMENT:
                return self._describe_environment(name)
            case ResourceKind.APPLICATION:
                return self._describe_application(name)
            case _:
                raise ValueError(f"Unsupported resource kind: {kind}")

    def _describe_stack(self, name: str) -> ProbeResult:
        try:
            response = self._cfn.describe_stacks(StackName=name)
        except ClientError as e:
            code, message = _client_error_details(e)
            if code == "ValidationError" and "does not exist" in message:
                return ProbeResult.absent()
            raise ProviderError(message, code=code, operation="DescribeStacks") from e
        except BotoCoreError as e:
            raise ProviderError(str(e), code=type(e).__name__, operation="DescribeStacks") from e

        stacks = response.get("Stacks", [])
        if not stacks:
            return ProbeResult.absent()

        stack = stacks[0]
        state = stack_state_from_status(stack["StackStatus"])
        if state == StackState.ABSENT:
            return ProbeResult.absent()
        return ProbeResult.present(
            state,
            handle=stack.get("StackId"),
            status_reason=stack.get("StackStatusReason"),
        )

    def _describe_environment(self, name: str) -> ProbeResult:
        response = self._call(
            "DescribeEnvironments",
            self._eb.describe_environments,
            EnvironmentNames=[name],
            IncludeDeleted=False,
        )
        live = [
            e
            for e in response.get("Environments", [])
            if e.get("Status") not in ENVIRONMENT_DELETED_STATUSES
        ]
        if not live:
            return ProbeResult.absent()

        env = live[0]
        state = environment_state_from_status(env["Status"], env.get("Health"))

        expected = self._pending_versions.get(name)
        if state == EnvironmentState.READY and expected and env.get("VersionLabel") != expected:
            # Deploy accepted but not yet picked up
            state = EnvironmentState.DEPLOYING

        return ProbeResult.present(
            state,
            handle=env.get("EnvironmentArn"),
            status_reason=f"{env['Status']}/{env.get('Health', 'Unknown')}",
        )

    def _describe_application(self, name: str) -> ProbeResult:
        response = self._call(
            "DescribeApplications",
            self._eb.describe_applications,
            ApplicationNames=[name],
        )
        apps = response.get("Applications", [])
        if not apps:
            return ProbeResult.absent()
        return ProbeResult.present(None, handle=apps[0].get("ApplicationArn"))

    # -------------------------------------------------------------------------
    # Stack operations
    # -------------------------------------------------------------------------

    def create_stack(self, descriptor: StackDescriptor) -> str:
        response = self._call(
            "CreateStack",
            self._cfn.create_stack,
            StackName=descriptor.name,
            TemplateBody=descriptor.template_body,
            Parameters=descriptor.to_cfn_parameters(),
            Capabilities=list(descriptor.capabilities),
        )
        return response["StackId"]

    def update_stack(self, descriptor: StackDescriptor) -> str | UpdateSignal:
        try:
            response = self._cfn.update_stack(
                StackName=descriptor.name,
                TemplateBody=descriptor.template_body,
                Parameters=descriptor.to_cfn_parameters(),
                Capabilities=list(descriptor.capabilities),
            )
        except ClientError as e:
            code, message = _client_error_details(e)
            if code == "ValidationError" and NO_UPDATES_MESSAGE in message:
                return NO_CHANGES
            raise ProviderError(message, code=code, operation="UpdateStack") from e
        except BotoCoreError as e:
            raise ProviderError(str(e), code=type(e).__name__, operation="UpdateStack") from e
        return response["StackId"]

    def list_outputs(self, stack_name: str) -> dict[str, str]:
        response = self._call("DescribeStacks", self._cfn.describe_stacks, StackName=stack_name)
        stacks = response.get("Stacks", [])
        if not stacks:
            return {}
        return {o["OutputKey"]: o.get("OutputValue", "") for o in stacks[0].get("Outputs", [])}

    # -------------------------------------------------------------------------
    # Application / environment operations
    # -------------------------------------------------------------------------

    def create_application(self, name: str) -> None:
        try:
            self._eb.create_application(ApplicationName=name)
        except ClientError as e:
            code, message = _client_error_details(e)
            # Lost a race with a concurrent init: the end state is the same
            if "already exists" in message:
                logger.info("Application already exists", extra={"application": name})
                return
            raise ProviderError(message, code=code, operation="CreateApplication") from e
        except BotoCoreError as e:
            raise ProviderError(str(e), code=type(e).__name__, operation="CreateApplication") from e

    def create_environment(self, descriptor: EnvironmentDescriptor) -> str:
        kwargs: dict[str, Any] = {
            "ApplicationName": descriptor.application,
            "EnvironmentName": descriptor.name,
            "OptionSettings": descriptor.to_option_settings(),
        }
        if descriptor.platform.startswith("arn:"):
            kwargs["PlatformArn"] = descriptor.platform
        else:
            kwargs["SolutionStackName"] = descriptor.platform

        response = self._call("CreateEnvironment", self._eb.create_environment, **kwargs)
        return response.get("EnvironmentName", descriptor.name)

    def latest_version_label(self, application: str) -> str | None:
        response = self._call(
            "DescribeApplicationVersions",
            self._eb.describe_application_versions,
            ApplicationName=application,
        )
        versions = response.get("ApplicationVersions", [])
        if not versions:
            return None
        latest = max(versions, key=lambda v: v["DateCreated"])
        return latest["VersionLabel"]

    def deploy_latest_version(self, application: str, environment_name: str) -> str:
        label = self.latest_version_label(application)
        if label is None:
            raise ProviderError(
                f"No staged application version for '{application}'",
                code="NoApplicationVersion",
                operation="UpdateEnvironment",
            )

        self._call(
            "UpdateEnvironment",
            self._eb.update_environment,
            EnvironmentName=environment_name,
            VersionLabel=label,
        )
        self._pending_versions[environment_name] = label
        logger.info(
            "Deploying application version",
            extra={"environment": environment_name, "version_label": label},
        )
        return environment_name

    def update_tags(self, handle: str, tags: Mapping[str, str]) -> None:
        self._call(
            "UpdateTagsForResource",
            self._eb.update_tags_for_resource,
            ResourceArn=handle,
            TagsToAdd=[{"Key": k, "Value": v} for k, v in sorted(tags.items())],
        )

    # -------------------------------------------------------------------------
    # Waiting
    # -------------------------------------------------------------------------

    def wait_for_terminal(
        self, kind: ResourceKind, handle: str, timeout_seconds: float
    ) -> TerminalOutcome:
        """Poll until the resource reaches a terminal state or the deadline passes.

        A timeout is reported as a Failed outcome, never as an exception.
        """
        failed = StackState.FAILED if kind == ResourceKind.STACK else EnvironmentState.FAILED
        start_time = time.monotonic()

        while True:
            probe = self.describe_resource(kind, handle)

            if not probe.exists:
                return TerminalOutcome(failed, reason=f"{kind.value} '{handle}' disappeared")

            if probe.state is not None and probe.state.is_terminal:
                if kind == ResourceKind.ENVIRONMENT:
                    self._pending_versions.pop(handle, None)
                return TerminalOutcome(probe.state, reason=probe.status_reason)

            elapsed = time.monotonic() - start_time
            if elapsed >= timeout_seconds:
                return TerminalOutcome(
                    failed,
                    reason=f"timed out after {int(elapsed)}s in state {_state_name(probe.state)}",
                    timed_out=True,
                )

            logger.debug(
                "Waiting for terminal state",
                extra={"kind": kind.value, "handle": handle, "state": _state_name(probe.state)},
            )
            self._sleep(min(self._poll_interval, max(timeout_seconds - elapsed, 0)))
