"""Pydantic models for the deployment spec.

The spec declares what to deploy: the application, its platform, the
infrastructure stack and the ordered list of environments. These models
validate it at the boundary and turn it into resource descriptors.
"""

from __future__ import annotations

import re
from typing import Annotated

from pydantic import BaseModel, Field, field_validator, model_validator

from .config import MAX_ENVIRONMENT_NAME_LENGTH, MAX_STACK_NAME_LENGTH
from .resources import DEFAULT_ENVIRONMENT_VARIABLE, StackDescriptor, environment_name

VALID_APPLICATION_PATTERN = r"^[A-Za-z0-9][A-Za-z0-9-]*$"
VALID_ENVIRONMENT_PATTERN = r"^[a-z0-9][a-z0-9-]*$"
VALID_STACK_NAME_PATTERN = r"^[A-Za-z][A-Za-z0-9-]*$"

VALID_CAPABILITIES: frozenset[str] = frozenset({
    "CAPABILITY_IAM",
    "CAPABILITY_NAMED_IAM",
    "CAPABILITY_AUTO_EXPAND",
})


class StackSpec(BaseModel):
    """Infrastructure stack declaration."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    name: Annotated[str, Field(min_length=1, max_length=MAX_STACK_NAME_LENGTH)]
    template: Annotated[str, Field(min_length=1)]
    parameters: dict[str, str] = Field(default_factory=dict)
    capabilities: list[str] = Field(default_factory=lambda: ["CAPABILITY_IAM"])

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not re.match(VALID_STACK_NAME_PATTERN, v):
            raise ValueError(f"stack name must match {VALID_STACK_NAME_PATTERN}")
        return v

    @field_validator("parameters", mode="before")
    @classmethod
    def stringify_parameters(cls, v: object) -> object:
        # YAML turns 10 into an int; CloudFormation wants strings
        if isinstance(v, dict):
            return {str(k): str(val) for k, val in v.items()}
        return v

    @field_validator("capabilities")
    @classmethod
    def validate_capabilities(cls, v: list[str]) -> list[str]:
        unknown = sorted(set(v) - VALID_CAPABILITIES)
        if unknown:
            raise ValueError(f"unknown capabilities {unknown}; valid: {sorted(VALID_CAPABILITIES)}")
        return v

    def to_descriptor(self, template_body: str) -> StackDescriptor:
        return StackDescriptor(
            name=self.name,
            template_body=template_body,
            parameters=self.parameters,
            capabilities=tuple(self.capabilities),
        )


class OutputKeys(BaseModel):
    """Names of the stack outputs that environments consume."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    vpc: str = "VPCId"
    subnets: tuple[str, str] = ("SubnetA", "SubnetB")
    additional: list[str] = Field(default_factory=list, alias="additionalRequired")

    @property
    def required(self) -> list[str]:
        """All required keys, environment-facing ones first, no duplicates."""
        keys = [self.vpc, *self.subnets, *self.additional]
        return list(dict.fromkeys(keys))


class DeploymentSpec(BaseModel):
    """Top-level deployment spec."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    application: Annotated[str, Field(min_length=1, max_length=100)]
    platform: Annotated[str, Field(min_length=1)]
    environments: list[str] = Field(default_factory=lambda: ["dev", "staging", "production"])
    stack: StackSpec
    outputs: OutputKeys = Field(default_factory=OutputKeys)
    tags: dict[str, str] = Field(default_factory=dict)
    environment_variable: str = Field(DEFAULT_ENVIRONMENT_VARIABLE, alias="environmentVariable")

    @field_validator("application")
    @classmethod
    def validate_application(cls, v: str) -> str:
        if not re.match(VALID_APPLICATION_PATTERN, v):
            raise ValueError(f"application must match {VALID_APPLICATION_PATTERN}")
        return v

    @field_validator("environments")
    @classmethod
    def validate_environments(cls, v: list[str]) -> list[str]:
        if not v:
            raise ValueError("at least one environment is required")
        seen: set[str] = set()
        for env in v:
            if not re.match(VALID_ENVIRONMENT_PATTERN, env):
                raise ValueError(f"environment '{env}' must match {VALID_ENVIRONMENT_PATTERN}")
            if env in seen:
                raise ValueError(f"environment '{env}' is declared more than once")
            seen.add(env)
        return v

    @model_validator(mode="after")
    def validate_environment_names(self) -> DeploymentSpec:
        # Elastic Beanstalk environment names are 4-40 characters
        for env in self.environments:
            name = environment_name(self.application, env)
            if not (4 <= len(name) <= MAX_ENVIRONMENT_NAME_LENGTH):
                raise ValueError(
                    f"environment name '{name}' must be 4-{MAX_ENVIRONMENT_NAME_LENGTH} characters"
                )
        return self

    @property
    def required_outputs(self) -> list[str]:
        return self.outputs.required
