"""One-way switch into no-op ingestion."""

from typing import Optional

from xray.utils.logger import get_logger

logger = get_logger(__name__)


class DegradationController:
    """
    Once tripped, stays tripped for the life of the owning client.

    No recovery, probing, or expiry. When disabled (degrade_on_error=False)
    trip() only reports failures and never degrades.
    """

    def __init__(self, enabled: bool = True):
        self.enabled = enabled
        self._degraded = False
        self.reason: Optional[str] = None

    @property
    def degraded(self) -> bool:
        return self._degraded

    def trip(self, error: BaseException) -> bool:
        """Record an ingestion failure. Returns True if the client is now degraded."""
        if not self.enabled:
            return False
        if not self._degraded:
            self._degraded = True
            self.reason = str(error)
            logger.warning(f"X-Ray ingestion degraded, further submissions are no-ops: {error}")
        return True
