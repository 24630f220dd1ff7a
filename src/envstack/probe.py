"""Existence probe for managed resources.

Used before every create/update decision. "Not found" is a normal answer;
anything else that goes wrong while asking is a ProbeError.
"""

from __future__ import annotations

import logging

from .errors import ProbeError, ProviderError
from .provider import CloudProvider
from .resources import ProbeResult, ResourceKind

logger = logging.getLogger(__name__)


class ResourceProbe:
    """Tri-state existence check: absent, present(state), or error."""

    def __init__(self, provider: CloudProvider) -> None:
        self._provider = provider

    def exists(self, kind: ResourceKind, name: str) -> ProbeResult:
        """Probe a resource by name.

        Raises:
            ProbeError: If the provider could not be queried.
        """
        try:
            result = self._provider.describe_resource(kind, name)
        except ProviderError as e:
            raise ProbeError(
                f"Failed to probe {kind.value} '{name}': {e}",
                resource=name,
            ) from e

        logger.debug(
            "Probed resource",
            extra={
                "kind": kind.value,
                "resource": name,
                "exists": result.exists,
                "state": result.state.value if result.state is not None else None,
            },
        )
        return result
