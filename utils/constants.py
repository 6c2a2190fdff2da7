APP_NAME = "Budget Ledger"
APP_WIDTH = 960
APP_HEIGHT = 600
DB_FILE = "budget_ledger.db"

DATETIME_FORMAT = "%Y-%m-%d %H:%M:%S"
DATE_FORMAT = "%Y-%m-%d"

DIRECTIONS = ("income", "expense")
FREQUENCIES = ("daily", "weekly", "monthly", "yearly")

# Monitor / throttle
MIN_CHECK_INTERVAL_MINUTES = 30
FOREGROUND_POLL_MINUTES = 60
BACKGROUND_INTERVAL_HOURS = 12
BACKGROUND_TASK_NAME = "obligation-billing-task"

# Reminders
REMINDER_LEAD_DAYS = 1
DEFAULT_REMINDER_HOUR = 9
UPCOMING_DAYS = 7
NOTIFICATION_PUMP_MS = 30_000
REGISTRY_KEY = "notification_registry"

NOTIFICATION_TYPE_REMINDER = "obligation-reminder"
NOTIFICATION_TYPE_PAYMENT = "obligation-payment-recorded"

SEVERITY_COLORS = {
    "error":   "#F44336",
    "warning": "#FF9800",
    "info":    "#2196F3",
}
