"""Fake boto3 session for exercising AwsProvider without AWS.

Clients are MagicMocks, one per service, created lazily and cached so tests
can configure return values and side effects before or after construction.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any
from unittest.mock import MagicMock

from botocore.exceptions import ClientError

STACK_ID = "arn:aws:cloudformation:eu-west-1:123456789012:stack/demo-infra/abc-123"
CALLER_ARN = "arn:aws:iam::123456789012:user/ci"


def client_error(code: str, message: str, operation: str = "Operation") -> ClientError:
    """Build a ClientError the way botocore raises it."""
    return ClientError({"Error": {"Code": code, "Message": message}}, operation)


def stack_response(
    status: str,
    outputs: dict[str, str] | None = None,
    name: str = "demo-infra",
    reason: str | None = None,
) -> dict[str, Any]:
    stack: dict[str, Any] = {
        "StackName": name,
        "StackId": STACK_ID,
        "StackStatus": status,
        "Outputs": [{"OutputKey": k, "OutputValue": v} for k, v in (outputs or {}).items()],
    }
    if reason is not None:
        stack["StackStatusReason"] = reason
    return {"Stacks": [stack]}


def environment_response(
    status: str,
    health: str = "Green",
    name: str = "demo-dev",
    version_label: str | None = None,
) -> dict[str, Any]:
    env: dict[str, Any] = {
        "EnvironmentName": name,
        "EnvironmentArn": (
            f"arn:aws:elasticbeanstalk:eu-west-1:123456789012:environment/demo/{name}"
        ),
        "Status": status,
        "Health": health,
    }
    if version_label is not None:
        env["VersionLabel"] = version_label
    return {"Environments": [env]}


def application_versions(*labels: str) -> dict[str, Any]:
    """Versions created one day apart, in the order given."""
    return {
        "ApplicationVersions": [
            {"VersionLabel": label, "DateCreated": datetime(2024, 1, i + 1, tzinfo=UTC)}
            for i, label in enumerate(labels)
        ]
    }


class MockBotoSession:
    """Stand-in for boto3.Session."""

    def __init__(self, credentials: object | None = "creds") -> None:
        self._credentials = credentials
        self.clients: dict[str, MagicMock] = {}

    def get_credentials(self) -> object | None:
        return self._credentials

    def client(self, service: str, region_name: str | None = None) -> MagicMock:
        if service not in self.clients:
            client = MagicMock(name=f"{service}-client")
            if service == "sts":
                client.get_caller_identity.return_value = {
                    "Account": "123456789012",
                    "Arn": CALLER_ARN,
                }
            self.clients[service] = client
        return self.clients[service]

    @property
    def cloudformation(self) -> MagicMock:
        return self.client("cloudformation")

    @property
    def elasticbeanstalk(self) -> MagicMock:
        return self.client("elasticbeanstalk")
