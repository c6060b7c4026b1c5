#!/usr/bin/env python3
"""
DSC Bridge
Reports the status of a DSC security panel to an MQTT broker and sends
SMS/push notifications, and applies arm/disarm commands received over MQTT.

This bridge is configured via 'dsc-bridge.conf' and 'defaults.py'.
"""
# --- Application Version ---
__version__ = "1.0.0"

import logging
import logging.handlers
import signal
import sys

# --- SCRIPT INITIALIZATION ---

# 1. Import the configuration loader FIRST.
from configuration import load_and_validate_config

# 2. Load and validate all configuration from files.
config = load_and_validate_config()

# 3. Define the logging setup function.
def setup_logging():
    """Configure logging based on the loaded config object."""
    log = logging.getLogger()
    if log.handlers:
        return log
    log.setLevel(getattr(logging, config.LOG_LEVEL, logging.INFO))
    formatter = logging.Formatter(config.LOG_FORMAT, datefmt=config.LOG_DATE_FORMAT)
    if config.LOG_TO_FILE:
        handler = logging.handlers.RotatingFileHandler(
            config.LOG_FILE, maxBytes=config.LOG_MAX_MB * 1024 * 1024, backupCount=config.LOG_BACKUP_COUNT
        )
    else:
        handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)
    log.addHandler(handler)
    return log

# 4. Set up the logger.
log = setup_logging()
log.info("Logging configured successfully.")

# 5. Now, import the rest of our modules.
from bridge import build_bridge, load_panel_source

# --- END INITIALIZATION ---


def handle_shutdown(signum, frame):
    log.info("Received shutdown signal (%d), stopping bridge...", signum)
    sys.exit(0)

def main():
    signal.signal(signal.SIGINT, handle_shutdown)
    signal.signal(signal.SIGTERM, handle_shutdown)

    log.info("Starting DSC Bridge version %s", __version__)

    try:
        panel = load_panel_source(config.PANEL_SOURCE, config)
    except (ImportError, AttributeError) as e:
        log.critical("Unable to load panel source '%s': %s", config.PANEL_SOURCE, e)
        sys.exit(1)

    bridge = build_bridge(config, panel)
    log.info('='*60)
    log.info('DSC Bridge Started')
    log.info('MQTT: %s', f"{config.MQTT_HOST}:{config.MQTT_PORT}" if config.MQTT_ENABLED else 'disabled')
    log.info('Notifications: %s', ', '.join(config.NOTIFY_EVENTS) or 'none')
    log.info('='*60)

    try:
        bridge.run_forever(config.LOOP_INTERVAL)
    except (KeyboardInterrupt, SystemExit):
        log.info("Bridge stopped")
    except Exception as e:
        log.error("Bridge error: %s", e, exc_info=True)
        sys.exit(1)
    finally:
        bridge.stop()

if __name__ == '__main__':
    main()
