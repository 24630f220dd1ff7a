"""Tests for infrastructure stack provisioning."""

from __future__ import annotations

import pytest
from aws_mock import MockAwsProvider

from envstack.errors import MissingOutputError, ProviderError, ProvisionError
from envstack.resources import StackDescriptor, StackState
from envstack.stacks import StackAction, StackProvisioner

DESCRIPTOR = StackDescriptor(
    "demo-infra", "Resources: {}", parameters={"Env": "shared"}, capabilities=("CAPABILITY_IAM",)
)
REQUIRED = ["VPCId", "SubnetA", "SubnetB"]


class TestApplyStack:
    """Tests for StackProvisioner.apply_stack."""

    def test_creates_absent_stack(self) -> None:
        provider = MockAwsProvider()

        result = StackProvisioner(provider).apply_stack(DESCRIPTOR, REQUIRED)

        assert result.action == StackAction.CREATE
        assert result.state == StackState.COMPLETE
        assert result.outputs is not None
        assert result.outputs["VPCId"] == "vpc-1"
        assert provider.operations() == [
            "describe_resource",
            "create_stack",
            "wait_for_terminal",
            "list_outputs",
        ]

    def test_updates_existing_stack(self) -> None:
        provider = MockAwsProvider()
        provider.seed_stack(StackDescriptor("demo-infra", "Resources: {old: 1}"))

        result = StackProvisioner(provider).apply_stack(DESCRIPTOR, REQUIRED)

        assert result.action == StackAction.UPDATE
        assert provider.operations() == [
            "describe_resource",
            "update_stack",
            "wait_for_terminal",
            "list_outputs",
        ]

    def test_no_changes_is_success(self) -> None:
        """Test that "no updates to perform" completes without waiting."""
        provider = MockAwsProvider()
        provider.seed_stack(DESCRIPTOR)

        result = StackProvisioner(provider).apply_stack(DESCRIPTOR, REQUIRED)

        assert result.action == StackAction.NO_CHANGES
        assert result.state == StackState.COMPLETE
        assert "wait_for_terminal" not in provider.operations()
        assert "create_stack" not in provider.operations()

    def test_apply_twice_is_idempotent(self) -> None:
        """Test that a second apply of the same descriptor changes nothing."""
        provider = MockAwsProvider()
        provisioner = StackProvisioner(provider)

        first = provisioner.apply_stack(DESCRIPTOR, REQUIRED)
        second = provisioner.apply_stack(DESCRIPTOR, REQUIRED)

        assert first.action == StackAction.CREATE
        assert second.action == StackAction.NO_CHANGES
        assert second.outputs == first.outputs
        assert len(provider.calls_for("create_stack")) == 1

    def test_waits_out_in_flight_operation(self) -> None:
        provider = MockAwsProvider()
        provider.seed_stack(DESCRIPTOR, StackState.UPDATE_IN_PROGRESS)

        result = StackProvisioner(provider).apply_stack(DESCRIPTOR, REQUIRED)

        assert result.action == StackAction.NO_CHANGES
        assert provider.operations()[:3] == [
            "describe_resource",
            "wait_for_terminal",
            "update_stack",
        ]

    def test_failed_stack_without_changes_is_fatal(self) -> None:
        """Test that a Failed stack is not reported Complete when nothing changes."""
        provider = MockAwsProvider()
        provider.seed_stack(DESCRIPTOR, StackState.FAILED)

        with pytest.raises(ProvisionError, match="is Failed and has no pending changes"):
            StackProvisioner(provider).apply_stack(DESCRIPTOR, REQUIRED)

        assert provider.operations() == ["describe_resource", "update_stack"]

    def test_failed_stack_with_changes_is_updated(self) -> None:
        provider = MockAwsProvider()
        provider.seed_stack(StackDescriptor("demo-infra", "Resources: {old: 1}"), StackState.FAILED)

        result = StackProvisioner(provider).apply_stack(DESCRIPTOR, REQUIRED)

        assert result.action == StackAction.UPDATE
        assert result.state == StackState.COMPLETE

    def test_create_failure(self) -> None:
        provider = MockAwsProvider(fail_stack=True)

        with pytest.raises(ProvisionError) as exc_info:
            StackProvisioner(provider).apply_stack(DESCRIPTOR, REQUIRED)

        assert "create failed" in str(exc_info.value)
        assert "ROLLBACK_COMPLETE" in str(exc_info.value)
        assert "list_outputs" not in provider.operations()

    def test_timeout_is_provision_error(self) -> None:
        provider = MockAwsProvider(stack_timeout=True)

        with pytest.raises(ProvisionError, match="timed out"):
            StackProvisioner(provider, timeout_seconds=60).apply_stack(DESCRIPTOR, REQUIRED)

    def test_rejected_create(self) -> None:
        provider = MockAwsProvider()
        provider.create_stack = _raise_provider_error  # type: ignore[method-assign]

        with pytest.raises(ProvisionError, match="Failed to create stack"):
            StackProvisioner(provider).apply_stack(DESCRIPTOR, REQUIRED)

    def test_missing_output_after_complete(self) -> None:
        provider = MockAwsProvider(outputs={"VPCId": "vpc-1", "SubnetA": "sub-a"})

        with pytest.raises(MissingOutputError) as exc_info:
            StackProvisioner(provider).apply_stack(DESCRIPTOR, REQUIRED)

        assert exc_info.value.key == "SubnetB"


def _raise_provider_error(descriptor: StackDescriptor) -> str:
    raise ProviderError(
        "Requires capabilities : [CAPABILITY_NAMED_IAM]", code="InsufficientCapabilities"
    )
