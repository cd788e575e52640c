"""Centralized tunables for pouchpal."""

# --- Undo ---
UNDO_WINDOW_SECONDS = 30

# --- Windows ---
WEEK_DAYS = 7
MONTH_DAYS = 30
DEFAULT_HISTORY_DAYS = 7

# --- Limit defaults ---
DEFAULT_DAILY_LIMIT = 10
DEFAULT_APPROACH_THRESHOLD = 0.8

# --- Labels ---
DEFAULT_UNIT_SINGULAR = "pouch"
DEFAULT_UNIT_PLURAL = "pouches"

# --- Daily summary ---
DEFAULT_SUMMARY_HOUR = 20
DEFAULT_SUMMARY_MINUTE = 0

# --- Sources ---
SOURCE_HOME_BUTTON = "home_button"
SOURCE_WIDGET = "widget"
SOURCE_CLI = "cli"

# --- Notification identifiers ---
NOTIFY_APPROACHING = "approachingLimit"
NOTIFY_LIMIT_REACHED = "limitReached"
NOTIFY_DAILY_SUMMARY = "dailySummary"

# --- Shared store keys (read by the widget process) ---
KEY_TODAY_COUNT = "todayCount"
KEY_LAST_UPDATED = "lastUpdated"
KEY_LIMIT_ENABLED = "dailyLimitEnabled"
KEY_LIMIT_VALUE = "dailyLimitValue"
KEY_UNIT_SINGULAR = "unitLabelSingular"
KEY_UNIT_PLURAL = "unitLabelPlural"
KEY_PENDING_LOGS = "pendingLogs"

# --- Files ---
DB_FILENAME = "pouchpal.db"
SHARED_DB_FILENAME = "shared.db"
SETTINGS_FILENAME = "settings.yaml"
LOG_FILENAME = "pouchpal.log"

# --- CSV ---
CSV_HEADER = "timestamp,quantity,source,note"

# --- SQLite ---
SQLITE_TIMEOUT_SECONDS = 30.0

# --- Time ---
SECONDS_PER_MINUTE = 60
SECONDS_PER_HOUR = 3600
SECONDS_PER_DAY = 86400
SECONDS_PER_WEEK = 604800
