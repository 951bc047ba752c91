from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
import logging
from typing import Optional, Sequence

from .models import TimedRecord

LOGGER = logging.getLogger(__name__)


@dataclass
class WatermarkGate:
    """Accept a snapshot only when its newest record is newer than any accepted before."""

    watermark: Optional[datetime] = None

    def offer(self, records: Sequence[TimedRecord]) -> bool:
        candidate = records[-1].zoned_time if records else None
        if candidate is None:
            LOGGER.debug("Snapshot rejected: no timestamped records in window")
            return False
        if self.watermark is not None and candidate <= self.watermark:
            LOGGER.debug(
                "Snapshot rejected: newest record %s is not after watermark %s",
                candidate.isoformat(),
                self.watermark.isoformat(),
            )
            return False
        self.watermark = candidate
        return True

    def reset(self) -> None:
        self.watermark = None
