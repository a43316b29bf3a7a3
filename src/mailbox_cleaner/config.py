"""Configuration module for the mailbox cleaner.

This module handles loading and providing configuration values from
environment variables for the IMAP connection and the scan engine.
"""

import os

from dotenv import load_dotenv

# Load environment variables from .env file for configuration
load_dotenv()


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


# IMAP connection defaults
IMAP_SERVER = os.getenv("IMAP_SERVER", "imap.gmail.com")
IMAP_PORT = int(os.getenv("IMAP_PORT", "993"))  # 993 for SSL, 143 for plain
IMAP_USE_SSL = _env_flag("IMAP_USE_SSL", "true")
IMAP_MAILBOX = os.getenv("IMAP_MAILBOX", "INBOX")
IMAP_TIMEOUT = float(os.getenv("IMAP_TIMEOUT", "60"))
EMAIL_ADDRESS = os.getenv("EMAIL_ADDRESS", "")
EMAIL_PASSWORD = os.getenv("EMAIL_PASSWORD", "")

# Scan engine tuning
BATCH_SIZE = int(os.getenv("BATCH_SIZE", "2000"))
MAX_EMAIL_SAMPLES_PER_SENDER = int(os.getenv("MAX_EMAIL_SAMPLES_PER_SENDER", "10"))

# Longest single response line accepted from the server (UID SEARCH replies are one line)
IMAP_MAX_LINE = int(os.getenv("IMAP_MAX_LINE", "10000000"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
