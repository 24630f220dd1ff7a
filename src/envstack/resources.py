"""Resource descriptors and lifecycle states.

Two resource kinds are managed: the shared infrastructure stack and the
application environments that consume its outputs. Everything here is
immutable once built; all live state is re-derived by probing the provider.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

# Fixed tag keys stamped on every environment after first creation
TAG_ENVIRONMENT = "Environment"
TAG_APPLICATION = "Application"

# Default variable injected into a new environment, naming the environment
DEFAULT_ENVIRONMENT_VARIABLE = "ENVIRONMENT"


class ResourceKind(str, Enum):
    """Kinds of resources the probe understands."""

    STACK = "stack"
    ENVIRONMENT = "environment"
    APPLICATION = "application"


class StackState(str, Enum):
    """Lifecycle of the infrastructure stack."""

    ABSENT = "Absent"
    CREATE_IN_PROGRESS = "CreateInProgress"
    UPDATE_IN_PROGRESS = "UpdateInProgress"
    COMPLETE = "Complete"
    FAILED = "Failed"

    @property
    def is_terminal(self) -> bool:
        return self in (StackState.COMPLETE, StackState.FAILED)

    @property
    def in_progress(self) -> bool:
        return self in (StackState.CREATE_IN_PROGRESS, StackState.UPDATE_IN_PROGRESS)


class EnvironmentState(str, Enum):
    """Lifecycle of an application environment.

    Absent -> Creating -> Ready on first provisioning.
    Ready -> Deploying -> Ready on redeploy.
    Creating -> Failed is terminal.
    """

    ABSENT = "Absent"
    CREATING = "Creating"
    DEPLOYING = "Deploying"
    READY = "Ready"
    FAILED = "Failed"

    @property
    def is_terminal(self) -> bool:
        return self in (EnvironmentState.READY, EnvironmentState.FAILED)

    @property
    def in_progress(self) -> bool:
        return self in (EnvironmentState.CREATING, EnvironmentState.DEPLOYING)


@dataclass(frozen=True)
class ProbeResult:
    """Answer to "does this resource exist?".

    Absence is a normal result. Transport or auth failures never produce a
    ProbeResult; they surface as ProbeError.
    """

    exists: bool
    state: StackState | EnvironmentState | None = None
    handle: str | None = None
    status_reason: str | None = None

    @classmethod
    def absent(cls) -> ProbeResult:
        return cls(exists=False)

    @classmethod
    def present(
        cls,
        state: StackState | EnvironmentState | None,
        handle: str | None = None,
        status_reason: str | None = None,
    ) -> ProbeResult:
        return cls(exists=True, state=state, handle=handle, status_reason=status_reason)


@dataclass(frozen=True)
class TerminalOutcome:
    """Result of waiting on a provider operation."""

    state: StackState | EnvironmentState
    reason: str | None = None
    timed_out: bool = False

    @property
    def succeeded(self) -> bool:
        return self.state in (StackState.COMPLETE, EnvironmentState.READY)


@dataclass(frozen=True)
class StackDescriptor:
    """Desired state of the infrastructure stack.

    The template body is opaque: it is passed through to the provider and
    never inspected.
    """

    name: str
    template_body: str
    parameters: Mapping[str, str] = field(default_factory=dict)
    capabilities: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("stack name cannot be empty")
        if not self.template_body:
            raise ValueError("template body cannot be empty")
        # Freeze the caller's mapping so the descriptor stays immutable
        object.__setattr__(self, "parameters", dict(self.parameters))

    def to_cfn_parameters(self) -> list[dict[str, str]]:
        """Render parameters in CloudFormation's list-of-pairs format."""
        return [
            {"ParameterKey": key, "ParameterValue": str(value)}
            for key, value in sorted(self.parameters.items())
        ]


class OutputSet(Mapping[str, str]):
    """Read-only outputs of a completed stack.

    Safe to share between concurrently running environment reconcilers.
    """

    def __init__(self, stack_name: str, values: Mapping[str, str]) -> None:
        self._stack_name = stack_name
        self._values = dict(values)

    @property
    def stack_name(self) -> str:
        return self._stack_name

    def __getitem__(self, key: str) -> str:
        return self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, OutputSet):
            return self._stack_name == other._stack_name and self._values == other._values
        return super().__eq__(other)

    def __hash__(self) -> int:
        return hash((self._stack_name, tuple(sorted(self._values.items()))))

    def __repr__(self) -> str:
        return f"OutputSet(stack_name={self._stack_name!r}, values={self._values!r})"

    def first_missing(self, keys: Iterable[str]) -> str | None:
        """Return the first key that is absent or empty, or None."""
        for key in keys:
            if not self._values.get(key):
                return key
        return None

    def subset(self, keys: Iterable[str]) -> OutputSet:
        return OutputSet(self._stack_name, {k: self._values[k] for k in keys if k in self._values})


@dataclass(frozen=True)
class TagSet:
    """Tags applied to an environment right after its first creation."""

    tags: Mapping[str, str]

    def __post_init__(self) -> None:
        object.__setattr__(self, "tags", dict(self.tags))

    @classmethod
    def for_environment(
        cls,
        application: str,
        environment: str,
        extra: Mapping[str, str] | None = None,
    ) -> TagSet:
        """Build the fixed tag set, letting extra tags add but not override."""
        tags = dict(extra or {})
        tags[TAG_ENVIRONMENT] = environment
        tags[TAG_APPLICATION] = application
        return cls(tags)

    def to_aws_tags(self) -> list[dict[str, str]]:
        return [{"Key": key, "Value": value} for key, value in sorted(self.tags.items())]


@dataclass(frozen=True)
class EnvironmentDescriptor:
    """Desired state of a single application environment."""

    application: str
    environment: str
    platform: str
    vpc_id: str
    subnets: tuple[str, str]
    variables: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.application:
            raise ValueError("application cannot be empty")
        if not self.environment:
            raise ValueError("environment cannot be empty")
        if len(self.subnets) != 2:
            raise ValueError(f"exactly two subnets are required, got {len(self.subnets)}")
        object.__setattr__(self, "subnets", tuple(self.subnets))
        object.__setattr__(self, "variables", dict(self.variables))

    @property
    def name(self) -> str:
        return environment_name(self.application, self.environment)

    @classmethod
    def from_outputs(
        cls,
        application: str,
        environment: str,
        platform: str,
        outputs: OutputSet,
        vpc_key: str = "VPCId",
        subnet_keys: tuple[str, str] = ("SubnetA", "SubnetB"),
        variable_name: str = DEFAULT_ENVIRONMENT_VARIABLE,
    ) -> EnvironmentDescriptor:
        """Build a descriptor, taking network placement verbatim from outputs."""
        return cls(
            application=application,
            environment=environment,
            platform=platform,
            vpc_id=outputs[vpc_key],
            subnets=(outputs[subnet_keys[0]], outputs[subnet_keys[1]]),
            variables={variable_name: environment},
        )

    def to_option_settings(self) -> list[dict[str, Any]]:
        """Render the Elastic Beanstalk option settings for creation."""
        settings: list[dict[str, Any]] = [
            {"Namespace": "aws:ec2:vpc", "OptionName": "VPCId", "Value": self.vpc_id},
            {"Namespace": "aws:ec2:vpc", "OptionName": "Subnets", "Value": ",".join(self.subnets)},
        ]
        for key, value in sorted(self.variables.items()):
            settings.append(
                {
                    "Namespace": "aws:elasticbeanstalk:application:environment",
                    "OptionName": key,
                    "Value": value,
                }
            )
        return settings


def environment_name(application: str, environment: str) -> str:
    """Derive the provider-side environment name."""
    return f"{application}-{environment}"
