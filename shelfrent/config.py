import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./shelfrent.db")

# Redis (arq queue for notifications and the daily trial scan)
REDIS_URL = os.getenv("REDIS_URL")

# Resend Email Configuration
RESEND_API_KEY = os.getenv("RESEND_API_KEY")
EMAIL_FROM_ADDRESS = os.getenv("EMAIL_FROM_ADDRESS", "Shelfrent <noreply@shelfrent.local>")
# Operational alerts are mailed here when set (in addition to the alerts table)
ADMIN_ALERT_EMAIL = os.getenv("ADMIN_ALERT_EMAIL")

# Trial configuration
TRIAL_DURATION_DAYS = int(os.getenv("TRIAL_DURATION_DAYS", "30"))
# Reminder thresholds in days before trial end; 0 is the expiration notice
TRIAL_REMINDER_THRESHOLDS = (7, 3, 1, 0)

# Daily trial scan (UTC)
TRIAL_SCAN_HOUR = int(os.getenv("TRIAL_SCAN_HOUR", "6"))
TRIAL_SCAN_MINUTE = int(os.getenv("TRIAL_SCAN_MINUTE", "0"))
# A job marker older than this is treated as a crashed run
SCHEDULER_STALE_LOCK_MINUTES = int(os.getenv("SCHEDULER_STALE_LOCK_MINUTES", "120"))
# Consecutive skipped runs before an operational alert is raised
SCHEDULER_OVERLAP_ALERT_THRESHOLD = int(os.getenv("SCHEDULER_OVERLAP_ALERT_THRESHOLD", "3"))

# Notification delivery retries (exponential backoff: base * 2 ** (try - 1))
NOTIFICATION_MAX_TRIES = int(os.getenv("NOTIFICATION_MAX_TRIES", "5"))
NOTIFICATION_BACKOFF_SECONDS = int(os.getenv("NOTIFICATION_BACKOFF_SECONDS", "30"))

# Booking confirmation compare-and-set retries
CONFIRM_MAX_RETRIES = int(os.getenv("CONFIRM_MAX_RETRIES", "3"))

# nextAvailable dates further out than this are reported as null
NEXT_AVAILABLE_HORIZON_DAYS = int(os.getenv("NEXT_AVAILABLE_HORIZON_DAYS", "365"))

# Longest monthly series the revenue range/trend reports will compute
REVENUE_RANGE_MAX_MONTHS = int(os.getenv("REVENUE_RANGE_MAX_MONTHS", "36"))

# Frontend base URL, used in notification payload links
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:5173")
