"""Pytest configuration and fixtures."""

import sys
from pathlib import Path

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Add tests to path for aws_mock imports
tests_path = Path(__file__).parent
sys.path.insert(0, str(tests_path))

TEMPLATE_BODY = """\
AWSTemplateFormatVersion: "2010-09-09"
Resources:
  VPC:
    Type: AWS::EC2::VPC
    Properties:
      CidrBlock: 10.0.0.0/16
Outputs:
  VPCId:
    Value: !Ref VPC
"""

SPEC_YAML = """\
application: demo
platform: "64bit Amazon Linux 2023 v4.0.0 running Python 3.11"
environments:
  - dev
stack:
  name: demo-infra
  template: infra.yaml
"""


@pytest.fixture
def spec_dir(tmp_path: Path) -> Path:
    """Directory holding a minimal deployment spec and its template."""
    (tmp_path / "infra.yaml").write_text(TEMPLATE_BODY)
    (tmp_path / "envstack.yaml").write_text(SPEC_YAML)
    return tmp_path


@pytest.fixture
def spec_path(spec_dir: Path) -> Path:
    return spec_dir / "envstack.yaml"


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    """Strip configuration variables the host environment may set."""
    for key in (
        "AWS_REGION",
        "AWS_DEFAULT_REGION",
        "ENVSTACK_SPEC",
        "STACK_TIMEOUT",
        "ENVIRONMENT_TIMEOUT",
        "POLL_INTERVAL",
        "PARALLEL_ENVIRONMENTS",
        "FAIL_FAST",
    ):
        monkeypatch.delenv(key, raising=False)
    return monkeypatch
