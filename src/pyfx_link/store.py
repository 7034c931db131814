"""RegisterStore: the slave's in-memory map of head device to latest raw hex value."""

import logging

from .normalize import zero_data

logger = logging.getLogger(__name__)


class RegisterStore:
    """
    In-memory map of head device names to the raw hex data last written to them.
    Owned by exactly one FxLinkServer; lives as long as the process, no persistence.
    """

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        """Create an empty store, or seed it from `initial` (device -> hex data)."""
        self._values: dict[str, str] = {}
        if initial is not None:
            for device, data in initial.items():
                self.set(device, data)
            logger.debug("RegisterStore seeded: %d entries", len(self._values))

    def get(self, device: str, count: int = 1) -> str:
        """Return the stored data for `device`, or zeros for `count` words if never written."""
        if device not in self._values:
            return zero_data(count)
        return self._values[device]

    def set(self, device: str, data: str) -> str | None:
        """Store `data` for `device` (last write wins); return the previous value, if any."""
        previous = self._values.get(device)
        self._values[device] = data
        logger.info("Register %s: %s -> %s", device, previous if previous is not None else "(unset)", data)
        return previous

    def snapshot(self) -> dict[str, str]:
        """Return a copy of all stored entries."""
        return dict(self._values)

    def __contains__(self, device: object) -> bool:
        return device in self._values

    def __len__(self) -> int:
        return len(self._values)
