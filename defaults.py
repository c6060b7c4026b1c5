"""
DSC Bridge Advanced Settings

Note: Most configuration lives in dsc-bridge.conf.
      Left here are the fixed timings, topic defaults, notification
      priorities and log format details.
      This file is in python format and very strict about formatting,
      indentation and such. Edit the file with care.
"""

# ============================================
# RUN LOOP
# ============================================

# Pause between loop passes, in seconds. Keep this short: the panel
# decoder buffer overflows if it is not serviced often enough.
LOOP_INTERVAL = 0.01

# Number of partitions in service (1..8)
PARTITIONS = 8

# ============================================
# MQTT
# ============================================

MQTT_PORT = 1883
MQTT_CLIENT_ID = 'dscKeybusInterface'
MQTT_KEEPALIVE = 60

# Fixed interval between reconnection attempts, in seconds.
RECONNECT_INTERVAL = 5.0

TOPIC_PARTITION = 'dsc/Get/Partition'
TOPIC_FIRE = 'dsc/Get/Fire'
TOPIC_ZONE = 'dsc/Get/Zone'
TOPIC_ZONE_ALARM = 'dsc/Get/ZoneAlarm'
TOPIC_POWER = 'dsc/Get/Power'
TOPIC_TROUBLE = 'dsc/Get/Trouble'
TOPIC_KEYPAD = 'dsc/Get/Keypad'
TOPIC_STATUS = 'dsc/Status'
TOPIC_COMMAND = 'dsc/Set'

# ============================================
# NOTIFICATIONS
# ============================================

# SMS gateway (Twilio message resource)
TWILIO_HOST = 'api.twilio.com'
TWILIO_PORT = 443
TWILIO_PATH = '/2010-04-01/Accounts/{account_sid}/Messages.json'
USER_AGENT = 'dsc-bridge'

# How long to wait for the first response byte, in seconds.
RESPONSE_TIMEOUT = 3.0

# Message prefix, to identify the sender of SMS/push messages.
MESSAGE_PREFIX = '[Security system] '

# Categories notified when [Notification] events is not set.
NOTIFY_EVENTS = ['alarm', 'fire', 'zone_alarm', 'power', 'trouble', 'keybus', 'keypad', 'armed']

# Priority per category (ntfy.sh):
#   1 = Min, 2 = Low, 3 = Default, 4 = High, 5 = Urgent
EVENT_PRIORITIES = {
    'alarm': 5,
    'fire': 5,
    'keypad': 5,
    'zone_alarm': 5,
    'power': 4,
    'trouble': 4,
    'keybus': 4,
    'armed': 3,
    'zone': 2,
}

# Priority for anything not listed above
DEFAULT_PRIORITY = 3

# ============================================
# LOGGING CONFIGURATION
# ============================================

# Log file rotation settings
LOG_BACKUP_COUNT = 5

# Log format
# Available fields: %(asctime)s, %(name)s, %(levelname)s, %(message)s
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
LOG_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'
