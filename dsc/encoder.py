"""
DSC Message Encoder

Maps a Change to the topic/payload published on the bus and to the text used
for push/SMS notifications. Pure functions only: the same change always
encodes to the same message.
"""

from dataclasses import dataclass

from .constants import (
    KEYPAD_ALARM_CODES,
    KEYPAD_ALARM_DESCRIPTIONS,
    PARTITION_STATE_DESCRIPTIONS,
    Subject,
)
from .tracker import Change


@dataclass(frozen=True)
class Topics:
    """Topic prefixes. Partition and zone numbers are appended where noted."""
    partition: str = 'dsc/Get/Partition'    # + partition number
    fire: str = 'dsc/Get/Fire'              # + partition number
    zone: str = 'dsc/Get/Zone'              # + zone number
    zone_alarm: str = 'dsc/Get/ZoneAlarm'   # + zone number
    power: str = 'dsc/Get/Power'
    trouble: str = 'dsc/Get/Trouble'
    keypad: str = 'dsc/Get/Keypad'
    status: str = 'dsc/Status'
    command: str = 'dsc/Set'


@dataclass(frozen=True)
class Message:
    topic: str
    payload: str
    retained: bool = True


STATUS_ONLINE = 'online'
STATUS_OFFLINE = 'offline'


def _flag(value) -> str:
    return '1' if value else '0'


class MessageEncoder:
    """Encodes changes for the bus and for notifications."""

    def __init__(self, topics: Topics = Topics()):
        self.topics = topics

    def encode(self, change: Change) -> Message:
        """
        Returns the bus message for a change.

        Raises:
            ValueError: If the change subject has no bus encoding
        """
        topics = self.topics
        subject, number, value = change.subject, change.number, change.value

        if subject == Subject.PARTITION:
            return Message(f"{topics.partition}{number}", f"{number}{value.value}")
        if subject == Subject.FIRE:
            return Message(f"{topics.fire}{number}", _flag(value))
        if subject == Subject.ZONE_OPEN:
            return Message(f"{topics.zone}{number}", _flag(value))
        if subject == Subject.ZONE_ALARM:
            return Message(f"{topics.zone_alarm}{number}", _flag(value))
        if subject == Subject.POWER_TROUBLE:
            return Message(topics.power, _flag(value))
        if subject == Subject.TROUBLE:
            return Message(topics.trouble, _flag(value))
        if subject == Subject.KEYBUS:
            return Message(topics.status, STATUS_ONLINE if value else STATUS_OFFLINE)
        if subject in KEYPAD_ALARM_CODES:
            # Keypad buttons are momentary; never retain them.
            return Message(topics.keypad, KEYPAD_ALARM_CODES[subject], retained=False)
        raise ValueError(f"No bus encoding for {subject}")

    @staticmethod
    def describe(change: Change) -> str:
        """Returns the notification text for a change."""
        subject, number, value = change.subject, change.number, change.value

        if subject == Subject.PARTITION:
            return f"Partition {number} {PARTITION_STATE_DESCRIPTIONS[value]}"
        if subject == Subject.FIRE:
            return f"Partition {number} fire alarm" if value else f"Partition {number} fire alarm restored"
        if subject == Subject.ZONE_OPEN:
            return f"Zone {number} open" if value else f"Zone {number} closed"
        if subject == Subject.ZONE_ALARM:
            return f"Zone alarm: {number}" if value else f"Zone alarm restored: {number}"
        if subject == Subject.POWER_TROUBLE:
            return "AC power trouble" if value else "AC power restored"
        if subject == Subject.TROUBLE:
            return "Trouble status on" if value else "Trouble status restored"
        if subject == Subject.KEYBUS:
            return "Keybus connected" if value else "Keybus disconnected"
        if subject in KEYPAD_ALARM_DESCRIPTIONS:
            return KEYPAD_ALARM_DESCRIPTIONS[subject]
        raise ValueError(f"No description for {subject}")
