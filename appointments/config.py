import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# SMS provider
SMS_API_URL = os.getenv("SMS_API_URL", "https://api.sms.dk/v1")
SMS_API_TOKEN = os.getenv("SMS_API_TOKEN")
SMS_SENDER_NAME = os.getenv("SMS_SENDER_NAME", "BySisters")
SMS_TIMEOUT_SECONDS = float(os.getenv("SMS_TIMEOUT_SECONDS", "10"))

# Minimum spacing between two messages of the same conversation
NOTIFICATION_COOLDOWN_MINUTES = int(os.getenv("NOTIFICATION_COOLDOWN_MINUTES", "15"))

# Reminders are rendered and scheduled in this zone
DISPLAY_TIME_ZONE = os.getenv("DISPLAY_TIME_ZONE", "Europe/Paris")
MESSAGE_LANGUAGE = os.getenv("MESSAGE_LANGUAGE", "da")

# Used when a product has no duration/buffertime set
DEFAULT_DURATION_MINUTES = int(os.getenv("DEFAULT_DURATION_MINUTES", "60"))
DEFAULT_BUFFERTIME_MINUTES = int(os.getenv("DEFAULT_BUFFERTIME_MINUTES", "0"))
