"""
DSC Change Tracker

Turns the one-shot changed flags of a PanelState into a stream of individual
Change events. Each flag is cleared immediately before its event is yielded,
so a change is reported exactly once and always by the pass that consumed it.
"""

from dataclasses import dataclass
from typing import Any, Iterator, Union

from .constants import (
    AdvisoryKind,
    ArmedMode,
    MAX_PARTITIONS,
    PartitionState,
    Subject,
    ZONE_GROUPS,
    ZONES_PER_GROUP,
)
from .state import PanelState, PartitionStatus, ZoneBitfield, zone_number


@dataclass(frozen=True)
class Change:
    """A single fact that changed: subject, partition/zone number and new value."""
    subject: Subject
    number: int
    value: Any


@dataclass(frozen=True)
class Advisory:
    """A non-fatal condition reported by the panel source."""
    kind: AdvisoryKind


Event = Union[Change, Advisory]


def armed_state(partition: PartitionStatus) -> PartitionState:
    """Maps the armed flags of a partition to its bus state code."""
    if not partition.armed:
        return PartitionState.DISARMED
    if partition.armed_mode == ArmedMode.STAY:
        return PartitionState.ARMED_STAY
    return PartitionState.ARMED_AWAY


def partition_state(partition: PartitionStatus) -> PartitionState:
    """
    The single state code reported for a partition.

    An alarm outranks an exit delay, which outranks the armed state.
    """
    if partition.alarm:
        return PartitionState.TRIGGERED
    if partition.exit_delay:
        return PartitionState.EXIT_DELAY
    return armed_state(partition)


class ChangeTracker:
    """
    Enumerates and consumes the changed flags of a PanelState.

    Args:
        state: The panel state owned by the panel source
        partition_count: Number of partitions in service (1..8)
    """

    def __init__(self, state: PanelState, partition_count: int = MAX_PARTITIONS):
        if not 1 <= partition_count <= MAX_PARTITIONS:
            raise ValueError(f"partition_count must be between 1 and {MAX_PARTITIONS}")
        self.state = state
        self.partition_count = partition_count

    def poll(self) -> Iterator[Event]:
        """
        Yields every pending change, clearing each flag as it goes.

        Nothing is yielded unless the panel source reported a status change.
        """
        state = self.state
        if not state.status_changed:
            return
        state.status_changed = False

        if state.buffer_overflow:
            state.buffer_overflow = False
            yield Advisory(AdvisoryKind.BUFFER_OVERFLOW)

        for number in range(1, self.partition_count + 1):
            partition = state.partition(number)
            if partition.disabled:
                continue
            yield from self._partition_changes(partition)

        yield from self._zone_changes(Subject.ZONE_OPEN, state.open_zones, state.open_zones_changed)
        yield from self._zone_changes(Subject.ZONE_ALARM, state.alarm_zones, state.alarm_zones_changed)

        if state.power_changed:
            state.power_changed = False
            yield Change(Subject.POWER_TROUBLE, 0, state.power_trouble)

        if state.trouble_changed:
            state.trouble_changed = False
            yield Change(Subject.TROUBLE, 0, state.trouble)

        if state.keybus_changed:
            state.keybus_changed = False
            yield Change(Subject.KEYBUS, 0, state.keybus_connected)

        if state.keypad_fire_alarm:
            state.keypad_fire_alarm = False
            yield Change(Subject.KEYPAD_FIRE, 0, True)
        if state.keypad_aux_alarm:
            state.keypad_aux_alarm = False
            yield Change(Subject.KEYPAD_AUX, 0, True)
        if state.keypad_panic_alarm:
            state.keypad_panic_alarm = False
            yield Change(Subject.KEYPAD_PANIC, 0, True)

    def _partition_changes(self, partition: PartitionStatus) -> Iterator[Change]:
        number = partition.number

        if partition.armed_changed or partition.exit_delay_changed or partition.alarm_changed:
            partition.armed_changed = False
            partition.exit_delay_changed = False
            partition.alarm_changed = False
            yield Change(Subject.PARTITION, number, partition_state(partition))

        if partition.fire_changed:
            partition.fire_changed = False
            yield Change(Subject.FIRE, number, partition.fire)

    @staticmethod
    def _zone_changes(subject: Subject, values: ZoneBitfield, changed: ZoneBitfield) -> Iterator[Change]:
        for group in range(ZONE_GROUPS):
            if not changed.group(group):
                continue
            for bit in range(ZONES_PER_GROUP):
                zone = zone_number(group, bit)
                if changed.get(zone):
                    changed.clear(zone)
                    yield Change(subject, zone, values.get(zone))
