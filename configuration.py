"""
Configuration loader for the DSC Bridge.

Reads and validates settings from 'dsc-bridge.conf' and 'defaults.py',
and provides them as clean Python objects to the main application.
"""

import configparser
import logging
import re
import sys

import defaults
from dsc.constants import MAX_PARTITIONS
from dsc.encoder import Topics

log = logging.getLogger(__name__)

CONFIG_FILE = 'dsc-bridge.conf'

NOTIFY_CATEGORIES = ('alarm', 'armed', 'fire', 'zone', 'zone_alarm', 'power', 'trouble', 'keybus', 'keypad')


class AppConfig:
    """A simple class to hold the final, validated configuration."""
    def __init__(self):
        # --- [Panel] ---
        self.PANEL_SOURCE = None
        self.PARTITIONS = defaults.PARTITIONS
        self.ACCESS_CODE = ''
        self.LOOP_INTERVAL = defaults.LOOP_INTERVAL

        # --- [MQTT] ---
        self.MQTT_ENABLED = False
        self.MQTT_HOST = None
        self.MQTT_PORT = defaults.MQTT_PORT
        self.MQTT_CLIENT_ID = defaults.MQTT_CLIENT_ID
        self.MQTT_USERNAME = None
        self.MQTT_PASSWORD = None
        self.MQTT_KEEPALIVE = defaults.MQTT_KEEPALIVE
        self.RECONNECT_INTERVAL = defaults.RECONNECT_INTERVAL
        self.TOPICS = Topics(
            partition=defaults.TOPIC_PARTITION,
            fire=defaults.TOPIC_FIRE,
            zone=defaults.TOPIC_ZONE,
            zone_alarm=defaults.TOPIC_ZONE_ALARM,
            power=defaults.TOPIC_POWER,
            trouble=defaults.TOPIC_TROUBLE,
            keypad=defaults.TOPIC_KEYPAD,
            status=defaults.TOPIC_STATUS,
            command=defaults.TOPIC_COMMAND,
        )

        # --- [Twilio] ---
        self.TWILIO_ENABLED = False
        self.TWILIO_HOST = defaults.TWILIO_HOST
        self.TWILIO_PORT = defaults.TWILIO_PORT
        self.TWILIO_ACCOUNT_SID = None
        self.TWILIO_AUTH_TOKEN = None
        self.TWILIO_FROM = None
        self.TWILIO_TO = None
        self.RESPONSE_TIMEOUT = defaults.RESPONSE_TIMEOUT

        # --- [ntfy] ---
        self.NTFY_ENABLED = False
        self.NTFY_URL = None
        self.NTFY_TITLE = 'DSC Alarm'
        self.NTFY_AUTH = None

        # --- [Notification] ---
        self.MESSAGE_PREFIX = defaults.MESSAGE_PREFIX
        self.NOTIFY_EVENTS = list(defaults.NOTIFY_EVENTS)
        self.EVENT_PRIORITIES = dict(defaults.EVENT_PRIORITIES)
        self.DEFAULT_PRIORITY = defaults.DEFAULT_PRIORITY

        # --- [Logging] ---
        self.LOG_LEVEL = 'INFO'
        self.LOG_TO_FILE = False
        self.LOG_FILE = None
        self.LOG_MAX_MB = 10
        self.LOG_BACKUP_COUNT = defaults.LOG_BACKUP_COUNT
        self.LOG_FORMAT = defaults.LOG_FORMAT
        self.LOG_DATE_FORMAT = defaults.LOG_DATE_FORMAT


def _validate_port(port: int, section: str, key: str) -> bool:
    """Helper function to validate a port number."""
    if not 1 <= port <= 65535:
        log.critical("Configuration Error in section [%s]: %s must be between 1 and 65535, but got %d.",
                     section, key, port)
        return False
    return True


def _load_panel(config: configparser.ConfigParser, app_config: AppConfig) -> bool:
    if not config.has_section('Panel'):
        log.critical("Configuration error: [Panel] section is missing in %s", CONFIG_FILE)
        return False

    is_valid = True
    app_config.PANEL_SOURCE = config.get('Panel', 'source', fallback=None)
    if not app_config.PANEL_SOURCE or ':' not in app_config.PANEL_SOURCE:
        log.critical("Configuration Error in [Panel]: source must be given as 'module:ClassName'.")
        is_valid = False

    app_config.ACCESS_CODE = config.get('Panel', 'access_code', fallback='')
    if app_config.ACCESS_CODE and not app_config.ACCESS_CODE.isdigit():
        log.critical("Configuration Error in [Panel]: access_code must contain digits only.")
        is_valid = False
    if not app_config.ACCESS_CODE:
        log.warning("No access_code in [Panel]. Disarm commands will be refused.")

    try:
        partitions = config.getint('Panel', 'partitions', fallback=defaults.PARTITIONS)
        if 1 <= partitions <= MAX_PARTITIONS:
            app_config.PARTITIONS = partitions
        else:
            log.critical("Configuration Error in [Panel]: partitions must be between 1 and %d, but got %d.",
                         MAX_PARTITIONS, partitions)
            is_valid = False
        app_config.LOOP_INTERVAL = config.getfloat('Panel', 'loop_interval', fallback=defaults.LOOP_INTERVAL)
    except ValueError:
        log.critical("Configuration Error in [Panel]: partitions and loop_interval must be numbers.")
        is_valid = False
    return is_valid


def _load_mqtt(config: configparser.ConfigParser, app_config: AppConfig) -> bool:
    if not config.getboolean('MQTT', 'enabled', fallback=False):
        return True

    app_config.MQTT_ENABLED = True
    app_config.MQTT_HOST = config.get('MQTT', 'host', fallback=None)
    if not app_config.MQTT_HOST:
        log.critical("Configuration Error in [MQTT]: enabled=Yes but host is missing.")
        return False

    is_valid = True
    try:
        port = config.getint('MQTT', 'port', fallback=defaults.MQTT_PORT)
        if _validate_port(port, 'MQTT', 'port'):
            app_config.MQTT_PORT = port
        else:
            is_valid = False
        app_config.MQTT_KEEPALIVE = config.getint('MQTT', 'keepalive', fallback=defaults.MQTT_KEEPALIVE)
        app_config.RECONNECT_INTERVAL = config.getfloat('MQTT', 'retry_interval',
                                                        fallback=defaults.RECONNECT_INTERVAL)
    except ValueError:
        log.critical("Configuration Error in [MQTT]: port, keepalive and retry_interval must be numbers.")
        is_valid = False

    if app_config.RECONNECT_INTERVAL <= 0:
        log.warning("Invalid retry_interval '%s'. Using default %.1f.",
                    app_config.RECONNECT_INTERVAL, defaults.RECONNECT_INTERVAL)
        app_config.RECONNECT_INTERVAL = defaults.RECONNECT_INTERVAL

    app_config.MQTT_CLIENT_ID = config.get('MQTT', 'client_id', fallback=defaults.MQTT_CLIENT_ID)
    app_config.MQTT_USERNAME = config.get('MQTT', 'username', fallback=None)
    app_config.MQTT_PASSWORD = config.get('MQTT', 'password', fallback=None)

    topics = app_config.TOPICS
    app_config.TOPICS = Topics(
        partition=config.get('MQTT', 'partition_topic', fallback=topics.partition),
        fire=config.get('MQTT', 'fire_topic', fallback=topics.fire),
        zone=config.get('MQTT', 'zone_topic', fallback=topics.zone),
        zone_alarm=config.get('MQTT', 'zone_alarm_topic', fallback=topics.zone_alarm),
        power=config.get('MQTT', 'power_topic', fallback=topics.power),
        trouble=config.get('MQTT', 'trouble_topic', fallback=topics.trouble),
        keypad=config.get('MQTT', 'keypad_topic', fallback=topics.keypad),
        status=config.get('MQTT', 'status_topic', fallback=topics.status),
        command=config.get('MQTT', 'command_topic', fallback=topics.command),
    )
    return is_valid


def _load_twilio(config: configparser.ConfigParser, app_config: AppConfig) -> bool:
    if not config.getboolean('Twilio', 'enabled', fallback=False):
        return True

    app_config.TWILIO_ENABLED = True
    is_valid = True
    for key in ('account_sid', 'auth_token', 'from', 'to'):
        if not config.get('Twilio', key, fallback=None):
            log.critical("Configuration Error in [Twilio]: enabled=Yes but %s is missing.", key)
            is_valid = False

    app_config.TWILIO_ACCOUNT_SID = config.get('Twilio', 'account_sid', fallback=None)
    app_config.TWILIO_AUTH_TOKEN = config.get('Twilio', 'auth_token', fallback=None)
    # Numbers are stored as digits only; the request adds the '+'.
    app_config.TWILIO_FROM = config.get('Twilio', 'from', fallback='').lstrip('+')
    app_config.TWILIO_TO = config.get('Twilio', 'to', fallback='').lstrip('+')
    app_config.TWILIO_HOST = config.get('Twilio', 'host', fallback=defaults.TWILIO_HOST)
    try:
        port = config.getint('Twilio', 'port', fallback=defaults.TWILIO_PORT)
        if _validate_port(port, 'Twilio', 'port'):
            app_config.TWILIO_PORT = port
        else:
            is_valid = False
        app_config.RESPONSE_TIMEOUT = config.getfloat('Twilio', 'response_timeout',
                                                      fallback=defaults.RESPONSE_TIMEOUT)
    except ValueError:
        log.critical("Configuration Error in [Twilio]: port and response_timeout must be numbers.")
        is_valid = False
    return is_valid


def _load_ntfy(config: configparser.ConfigParser, app_config: AppConfig) -> None:
    if not config.getboolean('ntfy', 'enabled', fallback=False):
        return
    if not config.has_option('ntfy', 'url'):
        log.warning("Section [ntfy] has enabled=Yes but is missing url. Push notifications will be disabled.")
        return

    app_config.NTFY_ENABLED = True
    app_config.NTFY_URL = config.get('ntfy', 'url')
    app_config.NTFY_TITLE = config.get('ntfy', 'title', fallback='DSC Alarm')

    auth_method = config.get('ntfy', 'auth', fallback='None').lower()
    if auth_method == 'token':
        token = config.get('ntfy', 'token', fallback=None)
        if token:
            app_config.NTFY_AUTH = {'method': 'token', 'token': token}
        else:
            log.warning("In section [ntfy], auth is 'Token' but 'token' is missing. Auth will be disabled.")
    elif auth_method == 'userpass':
        user = config.get('ntfy', 'user', fallback=None)
        password = config.get('ntfy', 'pass', fallback=None)
        if user and password:
            app_config.NTFY_AUTH = {'method': 'userpass', 'user': user, 'pass': password}
        else:
            log.warning("In section [ntfy], auth is 'Userpass' but user/pass is incomplete. Auth will be disabled.")


def _load_notification(config: configparser.ConfigParser, app_config: AppConfig) -> None:
    if not config.has_section('Notification'):
        return

    prefix = config.get('Notification', 'message_prefix', fallback=None)
    if prefix is not None:
        # configparser strips trailing whitespace, so add the separator back.
        app_config.MESSAGE_PREFIX = f"{prefix} " if prefix else ''

    events_str = config.get('Notification', 'events', fallback='')
    if events_str.strip():
        events = []
        for name in re.split(r'[, ]+', events_str):
            name = name.strip().lower()
            if not name:
                continue
            if name in NOTIFY_CATEGORIES:
                events.append(name)
            else:
                log.warning("In [Notification], ignoring unknown event category '%s'.", name)
        app_config.NOTIFY_EVENTS = events

    for name in NOTIFY_CATEGORIES:
        key = f'priority_{name}'
        if not config.has_option('Notification', key):
            continue
        try:
            priority = config.getint('Notification', key)
        except ValueError:
            log.warning("Invalid %s in [Notification]. Must be a number.", key.upper())
            continue
        if 1 <= priority <= 5:
            app_config.EVENT_PRIORITIES[name] = priority
        else:
            log.warning("Invalid %s '%d'. Must be between 1 and 5.", key.upper(), priority)


def _load_logging(config: configparser.ConfigParser, app_config: AppConfig) -> None:
    if not config.has_section('Logging'):
        return

    app_config.LOG_LEVEL = config.get('Logging', 'log_level', fallback='INFO').upper()
    log_to = config.get('Logging', 'log_to', fallback='Screen').lower()
    app_config.LOG_TO_FILE = (log_to == 'file')
    if not app_config.LOG_TO_FILE:
        return

    app_config.LOG_FILE = config.get('Logging', 'log_file', fallback=None)
    if not app_config.LOG_FILE:
        log.warning("LOG_TO is set to File, but no LOG_FILE was specified. Logging to screen instead.")
        app_config.LOG_TO_FILE = False
    try:
        max_mb = config.getint('Logging', 'log_max_mb', fallback=10)
        if 1 <= max_mb <= 100:
            app_config.LOG_MAX_MB = max_mb
        else:
            log.warning("Invalid LOG_MAX_MB '%d'. Must be between 1 and 100. Using default 10.", max_mb)

        backup_count = config.getint('Logging', 'log_backup_count', fallback=5)
        if 1 <= backup_count <= 10:
            app_config.LOG_BACKUP_COUNT = backup_count
        else:
            log.warning("Invalid LOG_BACKUP_COUNT '%d'. Must be between 1 and 10. Using default 5.", backup_count)
    except ValueError:
        log.warning("Invalid number in [Logging] for rotation settings. Using defaults.")


def load_and_validate_config(path: str = CONFIG_FILE) -> AppConfig:
    """
    Reads dsc-bridge.conf, validates its contents, and returns a final
    AppConfig object. Exits the process if the configuration is invalid.
    """
    config = configparser.ConfigParser(inline_comment_prefixes=('#', ';'))
    if not config.read(path):
        log.critical("Configuration Error: The '%s' file was not found or is empty.", path)
        sys.exit(1)

    app_config = AppConfig()
    is_valid = _load_panel(config, app_config)
    is_valid = _load_mqtt(config, app_config) and is_valid
    is_valid = _load_twilio(config, app_config) and is_valid
    _load_ntfy(config, app_config)
    _load_notification(config, app_config)
    _load_logging(config, app_config)

    if not (app_config.MQTT_ENABLED or app_config.TWILIO_ENABLED or app_config.NTFY_ENABLED):
        log.warning("Neither [MQTT], [Twilio] nor [ntfy] is enabled. Changes will only be logged.")

    if not is_valid:
        log.critical("Configuration validation failed. Please check the errors above. Exiting.")
        sys.exit(1)

    log.info("Configuration loaded successfully from %s and defaults.py.", path)
    return app_config
