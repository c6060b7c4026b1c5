"""
DSC Command Handler

Parses arm/disarm commands received on the bus and applies them to the panel,
based on the partition state at the time the command is received.

Payload format: [N]C
- N: optional partition number (1..8), defaults to 1
- C: S (arm stay), A (arm away), D (disarm)
"""

import logging
from dataclasses import dataclass
from typing import Set, Tuple

from .constants import ARM_KEYS, COMMANDS, MAX_PARTITIONS
from .state import PanelSource

log = logging.getLogger(__name__)


class CommandError(ValueError):
    """Raised for malformed commands or commands for an unknown partition."""


@dataclass(frozen=True)
class Command:
    partition: int
    code: str

    @property
    def name(self) -> str:
        return COMMANDS[self.code]


def parse_command(payload, partition_count: int = MAX_PARTITIONS) -> Command:
    """
    Parse a command payload.

    Args:
        payload: Raw payload (bytes or str), e.g. b'1D', 'A', '2S'
        partition_count: Number of configured partitions

    Returns:
        The parsed Command

    Raises:
        CommandError: If the payload is malformed or the partition is out of range
    """
    if isinstance(payload, (bytes, bytearray)):
        payload = payload.decode('ascii', errors='replace')
    text = payload.strip()

    if len(text) == 1:
        partition, code = 1, text
    elif len(text) == 2 and text[0].isdigit():
        partition, code = int(text[0]), text[1]
    else:
        raise CommandError(f"Malformed command payload: {payload!r}")

    code = code.upper()
    if code not in COMMANDS:
        raise CommandError(f"Unknown command '{code}' in payload {payload!r}")
    if not 1 <= partition <= partition_count:
        raise CommandError(f"Partition {partition} is not configured (1..{partition_count})")
    return Command(partition, code)


class CommandHandler:
    """
    Applies commands to the panel.

    A given (partition, command) is applied at most once per loop pass, so a
    redelivered command does not write the same keys twice before the panel
    has had a chance to update its state.
    """

    def __init__(self, panel: PanelSource, access_code: str, partition_count: int = MAX_PARTITIONS):
        self.panel = panel
        self.access_code = access_code
        self.partition_count = partition_count
        self._applied: Set[Tuple[int, str]] = set()

    def begin_pass(self) -> None:
        """Called once at the start of every loop pass."""
        self._applied.clear()

    def handle(self, payload) -> bool:
        """
        Parse and apply a raw command payload.

        Returns:
            True if keys were written to the panel, False otherwise

        Raises:
            CommandError: If the payload is invalid
        """
        command = parse_command(payload, self.partition_count)
        return self.apply(command)

    def apply(self, command: Command) -> bool:
        key = (command.partition, command.code)
        if key in self._applied:
            log.debug("Ignoring repeated %s for partition %d in this pass.", command.name, command.partition)
            return False

        state = self.panel.state
        partition = state.partition(command.partition)
        if partition.disabled:
            raise CommandError(f"Partition {command.partition} is disabled")

        if command.code in ARM_KEYS:
            if partition.armed or partition.exit_delay:
                log.info("Ignoring %s: partition %d is already armed or arming.", command.name, command.partition)
                return False
            if not partition.ready:
                # Re-announce the current state so bus consumers revert.
                log.warning("Cannot %s partition %d: partition is not ready.", command.name, command.partition)
                partition.armed_changed = True
                state.status_changed = True
                return False
            keys = ARM_KEYS[command.code]
        else:
            if not (partition.armed or partition.exit_delay or partition.alarm):
                log.info("Ignoring DISARM: partition %d is already disarmed.", command.partition)
                return False
            if not self.access_code:
                log.error("Cannot DISARM partition %d: no access code configured.", command.partition)
                return False
            keys = self.access_code

        self._applied.add(key)
        log.info("Applying %s to partition %d.", command.name, command.partition)
        self.panel.write(keys, command.partition)
        return True
