"""Best-effort tagging of newly created environments."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .errors import ProviderError, TagError
from .provider import CloudProvider
from .resources import TagSet

logger = logging.getLogger(__name__)


@dataclass
class TagResult:
    """Outcome of a tagging attempt. Never raised, only reported."""

    applied: bool
    skipped: bool = False
    error: TagError | None = None

    @property
    def success(self) -> bool:
        return self.error is None


class TagApplier:
    """Applies a TagSet to a resource identified by its handle (ARN)."""

    def __init__(self, provider: CloudProvider) -> None:
        self._provider = provider

    def apply_tags(self, handle: str | None, tag_set: TagSet) -> TagResult:
        """Apply tags to a resource.

        An unresolved (empty) handle is a soft no-op: nothing is sent to
        the provider and the result is still a success.
        """
        if not handle:
            logger.warning("Resource handle unresolved, skipping tags")
            return TagResult(applied=False, skipped=True)

        try:
            self._provider.update_tags(handle, tag_set.tags)
        except ProviderError as e:
            error = TagError(f"Failed to tag '{handle}': {e}", resource=handle)
            logger.warning("Tagging failed", extra={"handle": handle, "error": str(e)})
            return TagResult(applied=False, error=error)

        logger.info("Applied tags", extra={"handle": handle, "tags": dict(tag_set.tags)})
        return TagResult(applied=True)
