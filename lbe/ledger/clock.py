"""Conversion between ledger slots and protocol time (unix milliseconds)."""

from __future__ import annotations

from dataclasses import dataclass

from lbe.config.settings import NetworkConfig


@dataclass(frozen=True)
class SlotClock:
    zero_time_ms: int
    zero_slot: int
    slot_length_ms: int

    def slot_to_unix_time(self, slot: int) -> int:
        return self.zero_time_ms + (slot - self.zero_slot) * self.slot_length_ms

    def unix_time_to_slot(self, unix_time_ms: int) -> int:
        """Slot containing the given instant. Times before the zero point clamp to it."""
        elapsed = max(0, unix_time_ms - self.zero_time_ms)
        return self.zero_slot + elapsed // self.slot_length_ms

    @classmethod
    def from_config(cls, network: NetworkConfig) -> "SlotClock":
        return cls(
            zero_time_ms=network.zero_time_ms,
            zero_slot=network.zero_slot,
            slot_length_ms=network.slot_length_ms,
        )
