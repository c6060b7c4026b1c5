"""
DSC Bridge

Owns every component of the bridge and runs one pass of the run loop at a
time: service the panel, supervise the bus connection, then report each
pending change to the bus and to the notifiers.
"""

import importlib
import logging
import time
from typing import Callable, Iterable, Optional

import defaults
from configuration import AppConfig
from dsc.commands import CommandError, CommandHandler
from dsc.encoder import MessageEncoder, Topics
from dsc.state import PanelSource
from dsc.tracker import Advisory, Change, ChangeTracker
from notification import NotificationRouter, NotifyClient, NtfyNotifier
from publisher import BusPublisher
from supervisor import ConnectionSupervisor

log = logging.getLogger(__name__)


class Bridge:
    """
    Context structure holding the panel source and all bridge components.

    Args:
        panel: The panel-bus decoder
        topics: Bus topic prefixes
        partition_count: Number of partitions in service
        access_code: Code written to the panel to disarm
        publisher: Bus transport, or None when MQTT is disabled
        notifiers: SMS/push notifiers
        notify_events: Notification categories to send
    """

    def __init__(self, panel: PanelSource, topics: Topics = Topics(),
                 partition_count: int = defaults.PARTITIONS, access_code: str = '',
                 publisher: Optional[BusPublisher] = None, notifiers: Iterable = (),
                 notify_events: Iterable[str] = defaults.NOTIFY_EVENTS,
                 message_prefix: str = defaults.MESSAGE_PREFIX,
                 priorities: Optional[dict] = None, default_priority: int = defaults.DEFAULT_PRIORITY,
                 retry_interval: float = defaults.RECONNECT_INTERVAL,
                 clock: Callable[[], float] = time.monotonic):
        self.panel = panel
        self.topics = topics
        self.tracker = ChangeTracker(panel.state, partition_count)
        self.encoder = MessageEncoder(topics)
        self.commands = CommandHandler(panel, access_code, partition_count)
        self.router = NotificationRouter(
            notifiers, self.encoder, notify_events, message_prefix,
            priorities if priorities is not None else defaults.EVENT_PRIORITIES,
            default_priority,
        )

        self.publisher = publisher
        self.supervisor = None
        if publisher is not None:
            publisher.on_command = self.on_command
            self.supervisor = ConnectionSupervisor(
                publisher, self.resync, retry_interval=retry_interval, clock=clock
            )

    def resync(self) -> None:
        """Forces the next pass to report the complete panel status."""
        self.panel.state.request_resync()
        self.router.resyncing = True

    def on_command(self, topic: str, payload: bytes) -> None:
        if topic != self.topics.command:
            log.debug("Ignoring message on unexpected topic %s", topic)
            return
        try:
            self.commands.handle(payload)
        except CommandError as e:
            log.error("Rejected command %r: %s", payload, e)

    def run_once(self) -> None:
        """One pass of the run loop."""
        self.commands.begin_pass()
        self.panel.service()

        if self.supervisor is not None:
            self.supervisor.service()
            if self.supervisor.connected:
                self.publisher.ensure_subscribed(self.topics.command)

        for event in self.tracker.poll():
            if isinstance(event, Advisory):
                log.warning("Panel data buffer overflow, some panel data was lost.")
                continue
            self.dispatch(event)
        self.router.resyncing = False

    def dispatch(self, change: Change) -> None:
        log.info("%s", self.encoder.describe(change))
        if self.publisher is not None:
            message = self.encoder.encode(change)
            self.publisher.publish(message.topic, message.payload, retained=message.retained)
        self.router.route(change)

    def run_forever(self, interval: float = defaults.LOOP_INTERVAL) -> None:
        while True:
            self.run_once()
            if interval:
                time.sleep(interval)

    def stop(self) -> None:
        if self.publisher is not None:
            self.publisher.disconnect()


def load_panel_source(source: str, config: AppConfig) -> PanelSource:
    """
    Imports and constructs the panel source named as 'module:ClassName'.

    The class is called with the loaded configuration.
    """
    module_name, _, class_name = source.partition(':')
    module = importlib.import_module(module_name)
    factory = getattr(module, class_name)
    return factory(config)


def build_bridge(config: AppConfig, panel: PanelSource) -> Bridge:
    """Wires a Bridge from the loaded configuration."""
    publisher = None
    if config.MQTT_ENABLED:
        publisher = BusPublisher(
            broker_host=config.MQTT_HOST,
            broker_port=config.MQTT_PORT,
            client_id=config.MQTT_CLIENT_ID,
            username=config.MQTT_USERNAME,
            password=config.MQTT_PASSWORD,
            keepalive=config.MQTT_KEEPALIVE,
            status_topic=config.TOPICS.status,
        )

    notifiers = []
    if config.TWILIO_ENABLED:
        notifiers.append(NotifyClient(
            host=config.TWILIO_HOST,
            port=config.TWILIO_PORT,
            path=defaults.TWILIO_PATH.format(account_sid=config.TWILIO_ACCOUNT_SID),
            account_sid=config.TWILIO_ACCOUNT_SID,
            auth_token=config.TWILIO_AUTH_TOKEN,
            from_number=config.TWILIO_FROM,
            to_number=config.TWILIO_TO,
            user_agent=defaults.USER_AGENT,
            response_timeout=config.RESPONSE_TIMEOUT,
            service=panel.service,
        ))
    if config.NTFY_ENABLED:
        notifiers.append(NtfyNotifier(
            url=config.NTFY_URL,
            title=config.NTFY_TITLE,
            auth=config.NTFY_AUTH,
            default_priority=config.DEFAULT_PRIORITY,
        ))

    return Bridge(
        panel,
        topics=config.TOPICS,
        partition_count=config.PARTITIONS,
        access_code=config.ACCESS_CODE,
        publisher=publisher,
        notifiers=notifiers,
        notify_events=config.NOTIFY_EVENTS,
        message_prefix=config.MESSAGE_PREFIX,
        priorities=config.EVENT_PRIORITIES,
        default_priority=config.DEFAULT_PRIORITY,
        retry_interval=config.RECONNECT_INTERVAL,
    )
