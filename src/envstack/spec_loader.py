"""Deployment spec and template loading with validation.

All file operations enforce size limits. The template is read as an opaque
blob: its content is passed to CloudFormation and never interpreted here.
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import ValidationError

from .config import MAX_SPEC_FILE_SIZE_BYTES, MAX_TEMPLATE_FILE_SIZE_BYTES
from .models import DeploymentSpec

logger = logging.getLogger(__name__)


class SpecLoadError(Exception):
    """Raised when spec or template loading fails."""

    pass


def _read_bounded(path: Path, max_bytes: int, what: str) -> str:
    if not path.exists():
        raise SpecLoadError(f"{what} not found: {path}")

    try:
        file_size = path.stat().st_size
    except OSError as e:
        raise SpecLoadError(f"Failed to stat {what.lower()} {path}: {e}") from e

    if file_size > max_bytes:
        raise SpecLoadError(f"{what} exceeds maximum size of {max_bytes} bytes: {path}")

    try:
        return path.read_text(encoding="utf-8")
    except OSError as e:
        raise SpecLoadError(f"Failed to read {what.lower()} {path}: {e}") from e


def load_spec(spec_path: Path) -> DeploymentSpec:
    """Load and validate a deployment spec from YAML.

    Accepts both a flat document and a Kubernetes-style wrapper
    (apiVersion/kind/metadata/spec).

    Raises:
        SpecLoadError: If the spec cannot be loaded or fails validation.
    """
    content = _read_bounded(spec_path, MAX_SPEC_FILE_SIZE_BYTES, "Spec file")

    try:
        raw_data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise SpecLoadError(f"Invalid YAML in {spec_path}: {e}") from e

    if not isinstance(raw_data, dict):
        raise SpecLoadError(f"Spec file must contain a YAML mapping: {spec_path}")

    if "apiVersion" in raw_data and "spec" in raw_data:
        spec_data = raw_data.get("spec", {})
        if not isinstance(spec_data, dict):
            raise SpecLoadError(f"Spec section must be a mapping: {spec_path}")
    else:
        spec_data = raw_data

    try:
        spec = DeploymentSpec.model_validate(spec_data)
    except ValidationError as e:
        errors = []
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            msg = error["msg"]
            errors.append(f"  - {loc}: {msg}")

        error_list = "\n".join(errors)
        raise SpecLoadError(f"Validation failed for {spec_path}:\n{error_list}") from e

    logger.info(
        "Loaded deployment spec",
        extra={
            "spec_path": str(spec_path),
            "application": spec.application,
            "environments": spec.environments,
        },
    )
    return spec


def resolve_template_path(spec_path: Path, template: str) -> Path:
    """Resolve a template reference relative to the spec file's directory."""
    template_path = Path(template)
    if not template_path.is_absolute():
        template_path = spec_path.parent / template_path
    return template_path


def load_template(template_path: Path) -> str:
    """Read a CloudFormation template body.

    Raises:
        SpecLoadError: If the template is missing, oversized, unreadable or empty.
    """
    body = _read_bounded(template_path, MAX_TEMPLATE_FILE_SIZE_BYTES, "Template file")
    if not body.strip():
        raise SpecLoadError(f"Template file is empty: {template_path}")

    logger.info("Loaded template", extra={"template_path": str(template_path), "bytes": len(body)})
    return body
