# Small config module for the chat fan-out service

import os

PORT = int(os.environ.get("CHAT_PORT", "8090"))
HOST = os.environ.get("CHAT_HOST", "0.0.0.0")
DATABASE_URL = os.environ.get("CHAT_DATABASE_URL", "")
MESSAGE_LIFETIME_SECONDS = float(os.environ.get("CHAT_MESSAGE_LIFETIME_SECONDS", "60"))
SWEEP_INTERVAL_SECONDS = float(os.environ.get("CHAT_SWEEP_INTERVAL_SECONDS", "10"))
HISTORY_PAGE_SIZE = int(os.environ.get("CHAT_HISTORY_PAGE_SIZE", "50"))
SEND_QUEUE_SIZE = int(os.environ.get("CHAT_SEND_QUEUE_SIZE", "256"))
CORS_ORIGINS = [o.strip() for o in os.environ.get("CHAT_CORS_ORIGINS", "*").split(",") if o.strip()]
LOG_LEVEL = os.environ.get("CHAT_LOG_LEVEL", "INFO").upper()
