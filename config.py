"""Global configuration for the Planner reminders service."""

import os
from pathlib import Path
from dotenv import load_dotenv

load_dotenv()

# Data directory (sqlite database, client mirror, logs)
DATA_DIR = Path(os.getenv("PLANNER_DATA_DIR", Path(os.getenv("LOCALAPPDATA", ".")) / "planner"))

# Server persistence
PLANNER_DB = os.getenv("PLANNER_DB", str(DATA_DIR / "planner.db"))

# API server
API_HOST = os.getenv("API_HOST", "0.0.0.0")
API_PORT = int(os.getenv("API_PORT", 8100))

# Push channel - any endpoint that accepts {"content": ...} (Discord/Slack style webhook)
REMINDER_WEBHOOK_URL = os.getenv("REMINDER_WEBHOOK_URL")

# Reminder behaviour
DEFAULT_SNOOZE_MINUTES = int(os.getenv("DEFAULT_SNOOZE_MINUTES", 15))
REMINDER_POLL_SECONDS = int(os.getenv("REMINDER_POLL_SECONDS", 60))

# Client
PLANNER_API_URL = os.getenv("PLANNER_API_URL", "http://localhost:8100")
PLANNER_USER_ID = os.getenv("PLANNER_USER_ID")
CLIENT_MIRROR_PATH = os.getenv("CLIENT_MIRROR_PATH", str(DATA_DIR / "client_reminders.json"))
UPCOMING_WINDOW_MINUTES = int(os.getenv("UPCOMING_WINDOW_MINUTES", 5))
UPCOMING_CHECK_SECONDS = int(os.getenv("UPCOMING_CHECK_SECONDS", 60))

# Logging
LOG_DIR = Path(os.getenv("LOG_DIR", DATA_DIR / "logs"))
LOG_DIR.mkdir(parents=True, exist_ok=True)
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
