"""Tests for the resource probe and output resolver."""

from __future__ import annotations

import pytest
from aws_mock import MockAwsProvider

from envstack.errors import MissingOutputError, ProbeError, ProvisionError
from envstack.outputs import OutputResolver
from envstack.probe import ResourceProbe
from envstack.resources import ResourceKind, StackDescriptor, StackState

DESCRIPTOR = StackDescriptor("demo-infra", "Resources: {}")
REQUIRED = ["VPCId", "SubnetA", "SubnetB"]


class TestResourceProbe:
    """Tests for ResourceProbe."""

    def test_absent_is_a_result(self) -> None:
        probe = ResourceProbe(MockAwsProvider())

        result = probe.exists(ResourceKind.STACK, "demo-infra")

        assert result.exists is False

    def test_present(self) -> None:
        provider = MockAwsProvider()
        provider.seed_stack(DESCRIPTOR, StackState.UPDATE_IN_PROGRESS)

        result = ResourceProbe(provider).exists(ResourceKind.STACK, "demo-infra")

        assert result.exists is True
        assert result.state == StackState.UPDATE_IN_PROGRESS

    def test_provider_error_becomes_probe_error(self) -> None:
        """Test that probe failures never masquerade as absence."""
        provider = MockAwsProvider(probe_errors={"demo-dev"})

        with pytest.raises(ProbeError) as exc_info:
            ResourceProbe(provider).exists(ResourceKind.ENVIRONMENT, "demo-dev")

        assert exc_info.value.resource == "demo-dev"
        assert "Throttling" in str(exc_info.value)


class TestOutputResolver:
    """Tests for OutputResolver."""

    def test_resolves_required_outputs(self) -> None:
        provider = MockAwsProvider()
        provider.seed_stack(DESCRIPTOR, outputs={"VPCId": "vpc-1", "SubnetA": "a", "SubnetB": "b"})

        outputs = OutputResolver(provider).resolve("demo-infra", REQUIRED)

        assert dict(outputs) == {"VPCId": "vpc-1", "SubnetA": "a", "SubnetB": "b"}
        assert outputs.stack_name == "demo-infra"

    def test_extra_outputs_kept(self) -> None:
        provider = MockAwsProvider()
        provider.seed_stack(
            DESCRIPTOR,
            outputs={"VPCId": "vpc-1", "SubnetA": "a", "SubnetB": "b", "DbHost": "db"},
        )

        outputs = OutputResolver(provider).resolve("demo-infra", REQUIRED)

        assert outputs["DbHost"] == "db"

    def test_missing_output_names_key(self) -> None:
        provider = MockAwsProvider()
        provider.seed_stack(DESCRIPTOR, outputs={"VPCId": "vpc-1", "SubnetA": "a"})

        with pytest.raises(MissingOutputError) as exc_info:
            OutputResolver(provider).resolve("demo-infra", REQUIRED)

        assert exc_info.value.key == "SubnetB"

    def test_empty_output_is_missing(self) -> None:
        provider = MockAwsProvider()
        provider.seed_stack(DESCRIPTOR, outputs={"VPCId": "", "SubnetA": "a", "SubnetB": "b"})

        with pytest.raises(MissingOutputError) as exc_info:
            OutputResolver(provider).resolve("demo-infra", REQUIRED)

        assert exc_info.value.key == "VPCId"

    def test_unreadable_outputs(self) -> None:
        with pytest.raises(ProvisionError, match="Failed to read outputs"):
            OutputResolver(MockAwsProvider()).resolve("demo-infra", REQUIRED)
