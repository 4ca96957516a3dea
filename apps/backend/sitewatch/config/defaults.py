from __future__ import annotations

APP_VERSION = 1
DEFAULT_BIND = "127.0.0.1"
DEFAULT_PORT = 8770
DEFAULT_LOG_LEVEL = "info"

MAX_CAMERAS = 6
CAPTURE_WIDTH = 1280
CAPTURE_HEIGHT = 720

DEFAULT_ANALYSIS_INTERVAL_MS = 10_000
MIN_ANALYSIS_INTERVAL_MS = 5_000
MAX_ANALYSIS_INTERVAL_MS = 60_000
ANALYSIS_TIMEOUT_SECONDS = 30.0
ANALYSIS_WORKERS = 6

ANALYSIS_MAX_WIDTH = 512
ANALYSIS_MAX_HEIGHT = 384
ANALYSIS_JPEG_QUALITY = 60
USER_CAPTURE_JPEG_QUALITY = 90

DEFAULT_HISTORY_LIMIT = 100
MIN_HISTORY_LIMIT = 50
MAX_HISTORY_LIMIT = 100
NOTIFICATION_BACKLOG = 200

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
GEMINI_MODEL = "gemini-2.0-flash"
GEMINI_API_KEY_ENV = "GEMINI_API_KEY"
GEMINI_SECRET_NAME = "gemini_api_key"

HAZARD_PROMPT = (
    "Analyze this construction site camera image for dangerous situations like fire, smoke, "
    "unsafe conditions, missing safety equipment, falling objects, accidents, medical emergencies, "
    "suspicious activities, weapons, or violence. If danger detected, describe it with severity "
    "(low/medium/high). If no danger, respond 'No danger detected.'"
)
