"""
Constants related to the DSC panel status model.

This file defines the facts the bridge can report about the panel, the
single-letter partition state codes used on the bus, and the keys written
back to the panel for inbound commands.
"""

from enum import Enum

# Panel limits. Zones are grouped 8 per group, 8 groups.
MAX_PARTITIONS = 8
ZONE_GROUPS = 8
ZONES_PER_GROUP = 8
MAX_ZONES = ZONE_GROUPS * ZONES_PER_GROUP


class ArmedMode(Enum):
    NONE = 'none'
    AWAY = 'away'
    STAY = 'stay'


class Subject(Enum):
    """Every fact the change tracker can report."""
    PARTITION = 'partition'          # value: PartitionState
    FIRE = 'fire'                    # value: bool, per partition
    ZONE_OPEN = 'zone_open'          # value: bool, per zone
    ZONE_ALARM = 'zone_alarm'        # value: bool, per zone
    POWER_TROUBLE = 'power_trouble'  # value: bool
    TROUBLE = 'trouble'              # value: bool
    KEYBUS = 'keybus'                # value: bool (True = connected)
    KEYPAD_FIRE = 'keypad_fire'      # value: True (one-shot)
    KEYPAD_AUX = 'keypad_aux'        # value: True (one-shot)
    KEYPAD_PANIC = 'keypad_panic'    # value: True (one-shot)


class PartitionState(Enum):
    """Partition state codes, appended to the partition number on the bus."""
    ARMED_AWAY = 'A'
    ARMED_STAY = 'S'
    DISARMED = 'D'
    EXIT_DELAY = 'P'
    TRIGGERED = 'T'


class AdvisoryKind(Enum):
    BUFFER_OVERFLOW = 'buffer_overflow'


# --- Inbound Commands ---
# Command letter (as received on the command topic) -> human-readable name.
COMMANDS = {
    'S': 'ARM_STAY',
    'A': 'ARM_AWAY',
    'D': 'DISARM',
}

# Keys written to the panel for the arm commands. Disarm writes the access code.
ARM_KEYS = {
    'S': 's',
    'A': 'w',
}

# --- Human-readable Texts ---
# Used by the encoder to build notification messages.
PARTITION_STATE_DESCRIPTIONS = {
    PartitionState.ARMED_AWAY: "armed away",
    PartitionState.ARMED_STAY: "armed stay",
    PartitionState.DISARMED: "disarmed",
    PartitionState.EXIT_DELAY: "exit delay in progress",
    PartitionState.TRIGGERED: "in alarm",
}

KEYPAD_ALARM_CODES = {
    Subject.KEYPAD_FIRE: 'F',
    Subject.KEYPAD_AUX: 'A',
    Subject.KEYPAD_PANIC: 'P',
}

KEYPAD_ALARM_DESCRIPTIONS = {
    Subject.KEYPAD_FIRE: "Keypad Fire alarm",
    Subject.KEYPAD_AUX: "Keypad Aux alarm",
    Subject.KEYPAD_PANIC: "Keypad Panic alarm",
}
