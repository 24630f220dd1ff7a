"""Stack output resolution.

Hard precondition gate for environment work: no environment is touched
without a fully resolved OutputSet.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from .errors import MissingOutputError, ProviderError, ProvisionError
from .provider import CloudProvider
from .resources import OutputSet

logger = logging.getLogger(__name__)


class OutputResolver:
    """Reads stack outputs back and validates required keys."""

    def __init__(self, provider: CloudProvider) -> None:
        self._provider = provider

    def resolve(self, stack_name: str, required_keys: Sequence[str]) -> OutputSet:
        """Resolve the outputs of a completed stack.

        Args:
            stack_name: Stack to read outputs from.
            required_keys: Keys that must be present and non-empty.

        Returns:
            OutputSet with every output the stack exports.

        Raises:
            MissingOutputError: Naming the first required key that is absent or empty.
            ProvisionError: If the outputs could not be read.
        """
        try:
            values = self._provider.list_outputs(stack_name)
        except ProviderError as e:
            raise ProvisionError(
                f"Failed to read outputs of stack '{stack_name}': {e}",
                resource=stack_name,
            ) from e

        outputs = OutputSet(stack_name, values)
        missing = outputs.first_missing(required_keys)
        if missing is not None:
            logger.error(
                "Required stack output missing",
                extra={"stack": stack_name, "key": missing, "available": sorted(outputs)},
            )
            raise MissingOutputError(missing, stack_name)

        logger.info(
            "Resolved stack outputs",
            extra={"stack": stack_name, "keys": list(required_keys)},
        )
        return outputs
