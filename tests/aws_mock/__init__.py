"""AWS API Mock for Integration Testing.

Two layers of fakes:

- MockAwsProvider: an in-memory CloudProvider that simulates stack and
  environment lifecycles, records every call in order, and injects failures.
  Used to test the reconciliation core end to end.
- MockBotoSession: a boto3.Session stand-in handing out MagicMock clients.
  Used to test the AwsProvider adapter against canned API responses.

Usage:
    from aws_mock import MockAwsProvider

    provider = MockAwsProvider(fail_creates={"demo-staging"})
    report = await ReconciliationDriver(config, spec, provider).run()

    assert provider.operations()[0] == "check_credentials"
"""

from .boto import (
    CALLER_ARN,
    STACK_ID,
    MockBotoSession,
    application_versions,
    client_error,
    environment_response,
    stack_response,
)
from .provider import DEFAULT_OUTPUTS, Call, MockAwsProvider, MockEnvironment, MockStack

__all__ = [
    "CALLER_ARN",
    "DEFAULT_OUTPUTS",
    "STACK_ID",
    "Call",
    "MockAwsProvider",
    "MockBotoSession",
    "MockEnvironment",
    "MockStack",
    "application_versions",
    "client_error",
    "environment_response",
    "stack_response",
]
