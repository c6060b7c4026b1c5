"""
DSC Panel Status Model

Holds the panel state as produced by the panel-bus decoder. Every observable
value has a paired one-shot "changed" flag: the decoder sets it when the value
changes, and the change tracker clears it when it reports the change.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterator, List, Protocol

from .constants import ArmedMode, MAX_PARTITIONS, MAX_ZONES, ZONE_GROUPS, ZONES_PER_GROUP

log = logging.getLogger(__name__)


def zone_number(group: int, bit: int) -> int:
    """Converts a (group, bit) address to a 1-based zone number."""
    return group * ZONES_PER_GROUP + bit + 1


def zone_address(zone: int) -> tuple[int, int]:
    """Converts a 1-based zone number to its (group, bit) address."""
    if not 1 <= zone <= MAX_ZONES:
        raise ValueError(f"Zone must be between 1 and {MAX_ZONES}, got {zone}")
    return divmod(zone - 1, ZONES_PER_GROUP)


class ZoneBitfield:
    """
    A fixed set of 64 zone slots, stored as 8 groups of 8 bits.

    Zone N lives in group (N-1) // 8 at bit (N-1) % 8, so scanning groups
    ascending and bits ascending visits zones 1..64 in order.
    """

    def __init__(self, groups=None):
        self._groups = [0] * ZONE_GROUPS
        if groups is not None:
            for index, value in enumerate(groups):
                self.set_group(index, value)

    def get(self, zone: int) -> bool:
        group, bit = zone_address(zone)
        return bool(self._groups[group] & (1 << bit))

    def set(self, zone: int, value: bool = True) -> None:
        group, bit = zone_address(zone)
        if value:
            self._groups[group] |= 1 << bit
        else:
            self._groups[group] &= ~(1 << bit)

    def clear(self, zone: int) -> None:
        self.set(zone, False)

    def group(self, index: int) -> int:
        return self._groups[index]

    def set_group(self, index: int, value: int) -> None:
        if not 0 <= value <= 0xFF:
            raise ValueError(f"Zone group value must fit in 8 bits, got {value}")
        self._groups[index] = value

    def set_all(self) -> None:
        self._groups = [0xFF] * ZONE_GROUPS

    def clear_all(self) -> None:
        self._groups = [0] * ZONE_GROUPS

    def any(self) -> bool:
        return any(self._groups)

    def __iter__(self) -> Iterator[int]:
        """Yields the numbers of all set zones, ascending."""
        for group in range(ZONE_GROUPS):
            if not self._groups[group]:
                continue
            for bit in range(ZONES_PER_GROUP):
                if self._groups[group] & (1 << bit):
                    yield zone_number(group, bit)

    def __eq__(self, other):
        if not isinstance(other, ZoneBitfield):
            return NotImplemented
        return self._groups == other._groups

    def __repr__(self):
        return f"ZoneBitfield({list(self)})"


@dataclass
class PartitionStatus:
    """Status of a single partition (1..8) with its changed flags."""
    number: int
    armed: bool = False
    armed_mode: ArmedMode = ArmedMode.NONE
    exit_delay: bool = False
    alarm: bool = False
    fire: bool = False
    ready: bool = True
    disabled: bool = False

    armed_changed: bool = False
    exit_delay_changed: bool = False
    alarm_changed: bool = False
    fire_changed: bool = False

    def mark_changed(self) -> None:
        self.armed_changed = True
        self.exit_delay_changed = True
        self.alarm_changed = True
        self.fire_changed = True


def _default_partitions() -> List[PartitionStatus]:
    return [PartitionStatus(number=n) for n in range(1, MAX_PARTITIONS + 1)]


@dataclass
class PanelState:
    """
    Complete panel status as maintained by the panel-bus decoder.

    The bridge only reads values and clears changed flags. The one exception
    is request_resync(), which raises every changed flag so the next tracker
    pass re-reports the full current state.
    """
    partitions: List[PartitionStatus] = field(default_factory=_default_partitions)

    open_zones: ZoneBitfield = field(default_factory=ZoneBitfield)
    open_zones_changed: ZoneBitfield = field(default_factory=ZoneBitfield)
    alarm_zones: ZoneBitfield = field(default_factory=ZoneBitfield)
    alarm_zones_changed: ZoneBitfield = field(default_factory=ZoneBitfield)

    power_trouble: bool = False
    power_changed: bool = False
    trouble: bool = False
    trouble_changed: bool = False
    keybus_connected: bool = False
    keybus_changed: bool = False

    # One-shot keypad buttons: set by the decoder, cleared when reported.
    keypad_fire_alarm: bool = False
    keypad_aux_alarm: bool = False
    keypad_panic_alarm: bool = False

    # Set by the decoder whenever any of the above changed.
    status_changed: bool = False
    buffer_overflow: bool = False

    def partition(self, number: int) -> PartitionStatus:
        """Returns the status of a 1-based partition number."""
        if not 1 <= number <= len(self.partitions):
            raise ValueError(f"Partition must be between 1 and {len(self.partitions)}, got {number}")
        return self.partitions[number - 1]

    def request_resync(self) -> None:
        """Marks every tracked fact as changed."""
        for partition in self.partitions:
            if not partition.disabled:
                partition.mark_changed()
        self.open_zones_changed.set_all()
        self.alarm_zones_changed.set_all()
        self.power_changed = True
        self.trouble_changed = True
        self.keybus_changed = True
        self.status_changed = True
        log.debug("Full panel status resync requested.")


class PanelSource(Protocol):
    """
    Contract of the panel-bus decoder.

    service() must be called frequently: it drains the decoder's buffer and
    updates `state`. write() sends keys to the panel for a partition.
    """
    state: PanelState

    def service(self) -> bool:
        ...

    def write(self, keys: str, partition: int = 1) -> None:
        ...
