"""Relay mode selection.

A node either broadcasts the votes it receives locally or receives votes
broadcast by other nodes.  Anything that is not exactly ``BROADCAST``
falls back to ``RECEIVER``, so a typo in the config can never make a
node publish.
"""

import logging
from enum import Enum
from typing import Optional

logger = logging.getLogger(__name__)


class ListenerMode(str, Enum):
    BROADCAST = "BROADCAST"
    RECEIVER = "RECEIVER"

    @classmethod
    def resolve(cls, value: Optional[str]) -> "ListenerMode":
        """Map a config value onto a mode.  Case-sensitive; never raises."""
        if value is None:
            return cls.RECEIVER
        try:
            return cls(value)
        except ValueError:
            if value:
                logger.warning(
                    "Unknown mode %r, falling back to %s",
                    value,
                    cls.RECEIVER.value,
                )
            return cls.RECEIVER
