"""Central configuration for paths and constants."""

import os
from pathlib import Path

# Data directory, override with NATIVECHAT_DATA_DIR env var
DATA_DIR = Path(
    os.environ.get("NATIVECHAT_DATA_DIR", str(Path.home() / ".nativechat"))
)

# Database path
SQLITE_PATH = DATA_DIR / "conversations.db"

# Generation backend
GEMINI_API_KEY = os.environ.get("GEMINI_API_KEY", "")
GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
DEFAULT_MODEL = os.environ.get("NATIVECHAT_MODEL", "gemini-2.0-flash-exp")
TEMPERATURE = float(os.environ.get("NATIVECHAT_TEMPERATURE", "1.0"))
MAX_OUTPUT_TOKENS = int(os.environ.get("NATIVECHAT_MAX_OUTPUT_TOKENS", "8192"))
TOP_P = 0.95
TOP_K = 40
REQUEST_TIMEOUT = 120.0

# Guidance appended to every user turn; empty disables the preamble
SYSTEM_INSTRUCTION = os.environ.get("NATIVECHAT_SYSTEM_INSTRUCTION", "")

# Titles
PLACEHOLDER_TITLE = "New Conversation"
IMAGE_TITLE = "Image Conversation"
PROVISIONAL_TITLE_CHARS = 30
MAX_SENTENCE_CHARS = 60  # first model sentence must be shorter than this
MODEL_TITLE_WORDS = 4
USER_TITLE_WORDS = 5

# Listing
PREVIEW_CHARS = 120

# Storage accounting
SIZE_UNITS = ("Bytes", "KB", "MB", "GB", "TB")
