"""Tests for deployment spec models."""

from __future__ import annotations

from typing import Any

import pytest
from pydantic import ValidationError

from envstack.models import DeploymentSpec, OutputKeys, StackSpec


def _spec_data(**overrides: Any) -> dict[str, Any]:
    data: dict[str, Any] = {
        "application": "demo",
        "platform": "64bit Amazon Linux 2023 v4.0.0 running Python 3.11",
        "stack": {"name": "demo-infra", "template": "infra.yaml"},
    }
    data.update(overrides)
    return data


class TestStackSpec:
    """Tests for StackSpec."""

    def test_defaults(self) -> None:
        stack = StackSpec(name="demo-infra", template="infra.yaml")

        assert stack.parameters == {}
        assert stack.capabilities == ["CAPABILITY_IAM"]

    def test_parameters_stringified(self) -> None:
        """YAML scalars become CloudFormation strings."""
        stack = StackSpec.model_validate(
            {"name": "demo-infra", "template": "infra.yaml", "parameters": {"Count": 2, "On": True}}
        )

        assert stack.parameters == {"Count": "2", "On": "True"}

    def test_invalid_name(self) -> None:
        with pytest.raises(ValidationError):
            StackSpec(name="1-bad_name", template="infra.yaml")

    def test_unknown_capability(self) -> None:
        with pytest.raises(ValidationError, match="unknown capabilities"):
            StackSpec(name="demo-infra", template="infra.yaml", capabilities=["CAPABILITY_ROOT"])

    def test_to_descriptor(self) -> None:
        stack = StackSpec(
            name="demo-infra",
            template="infra.yaml",
            parameters={"Env": "shared"},
            capabilities=["CAPABILITY_NAMED_IAM"],
        )

        descriptor = stack.to_descriptor("Resources: {}")

        assert descriptor.name == "demo-infra"
        assert descriptor.template_body == "Resources: {}"
        assert descriptor.parameters == {"Env": "shared"}
        assert descriptor.capabilities == ("CAPABILITY_NAMED_IAM",)


class TestOutputKeys:
    """Tests for OutputKeys."""

    def test_default_required(self) -> None:
        assert OutputKeys().required == ["VPCId", "SubnetA", "SubnetB"]

    def test_additional_keys_deduplicated(self) -> None:
        keys = OutputKeys.model_validate({"additionalRequired": ["DbEndpoint", "VPCId"]})

        assert keys.required == ["VPCId", "SubnetA", "SubnetB", "DbEndpoint"]


class TestDeploymentSpec:
    """Tests for DeploymentSpec."""

    def test_minimal_spec(self) -> None:
        spec = DeploymentSpec.model_validate(_spec_data())

        assert spec.application == "demo"
        assert spec.environments == ["dev", "staging", "production"]
        assert spec.environment_variable == "ENVIRONMENT"
        assert spec.required_outputs == ["VPCId", "SubnetA", "SubnetB"]

    def test_environment_order_preserved(self) -> None:
        spec = DeploymentSpec.model_validate(_spec_data(environments=["qa", "dev", "prod"]))

        assert spec.environments == ["qa", "dev", "prod"]

    def test_duplicate_environment(self) -> None:
        with pytest.raises(ValidationError, match="more than once"):
            DeploymentSpec.model_validate(_spec_data(environments=["dev", "dev"]))

    def test_empty_environments(self) -> None:
        with pytest.raises(ValidationError, match="at least one"):
            DeploymentSpec.model_validate(_spec_data(environments=[]))

    def test_invalid_environment_name(self) -> None:
        with pytest.raises(ValidationError):
            DeploymentSpec.model_validate(_spec_data(environments=["Dev_1"]))

    def test_invalid_application_name(self) -> None:
        with pytest.raises(ValidationError):
            DeploymentSpec.model_validate(_spec_data(application="-demo"))

    def test_environment_name_too_long(self) -> None:
        """Derived names must fit Elastic Beanstalk's 40 character limit."""
        with pytest.raises(ValidationError, match="4-40 characters"):
            DeploymentSpec.model_validate(
                _spec_data(application="a" * 30, environments=["production"])
            )

    def test_aliases(self) -> None:
        spec = DeploymentSpec.model_validate(
            _spec_data(environmentVariable="STAGE", tags={"Team": "platform"})
        )

        assert spec.environment_variable == "STAGE"
        assert spec.tags == {"Team": "platform"}

    def test_unknown_fields_ignored(self) -> None:
        spec = DeploymentSpec.model_validate(_spec_data(owner="someone"))

        assert not hasattr(spec, "owner")
