"""Constants for membermail.

This module centralizes all magic numbers and default values used throughout the application.
"""

HOUR_IN_SECONDS = 3600
DAY_IN_SECONDS = 86400

# Delivery queue
MAX_PER_HOUR = 100
RATE_WINDOW_SECONDS = HOUR_IN_SECONDS
QUEUE_RETRY_DELAY_SECONDS = 60

# Event log
LOG_CAPACITY = 500

# Lifecycle scan: jobs one run may queue (<= 0 means no cap)
MAX_QUEUE_PER_RUN = 100

# Lifecycle scan windows
EXPIRY_SCAN_WINDOW_SECONDS = DAY_IN_SECONDS
DIRECT_REMINDER_WINDOW_SECONDS = 3 * DAY_IN_SECONDS
COMEBACK_AFTER_SECONDS = 30 * DAY_IN_SECONDS
VERIFY_REMINDER_DELAY_SECONDS = 3 * DAY_IN_SECONDS
VERIFY_REMINDER_INTERVAL_SECONDS = DAY_IN_SECONDS

# Verification
DEFAULT_VERIFY_TOKEN_TTL = 2 * DAY_IN_SECONDS
TOKEN_RANDOM_BYTES = 20

# Nonces are valid for the current and previous tick.
NONCE_TICK_SECONDS = 12 * HOUR_IN_SECONDS

# Option keys
QUEUE_OPTION_KEY = "membermail_email_queue"
RATE_OPTION_KEY = "membermail_email_rate"
LOG_OPTION_KEY = "membermail_logs"

# Hook ids
HOOK_PROCESS_QUEUE = "process_email_queue"
HOOK_LIFECYCLE_SCAN = "lifecycle_scan"
HOOK_SEND_WELCOME_VERIFY = "send_welcome_verify"
HOOK_SEND_VERIFY_REMINDER = "send_verify_reminder"
HOOK_SEND_PLAN_REMINDER = "send_plan_reminder"
HOOK_SEND_PLAN_EXPIRED = "send_plan_expired"
HOOK_SEND_COMEBACK = "send_comeback"

# Events
EVENT_TRIAL_EXPIRED = "trial_expired"
EVENT_SUBSCRIPTION_EXPIRED = "subscription_expired"
EVENT_VERIFIED = "verified"
EVENT_UNSUBSCRIBED = "unsubscribed"
EVENT_USER_REGISTERED = "user_registered"
