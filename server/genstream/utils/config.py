# genstream/utils/config.py
"""
Runtime configuration.

All knobs come from the environment (optionally a .env file) and are read once
at import time. Components take these as keyword defaults so callers and tests
can override them per instance.
"""
import os

from dotenv import load_dotenv

load_dotenv()

LOG_DIR = os.environ.get("AI_BACKEND_LOG_DIR", "./ai_backend_logs")
DEFAULT_MODEL = os.environ.get("AI_MODEL", "gemini-2.5-flash")
MAX_OUTPUT_TOKENS = int(os.environ.get("AI_MAX_OUTPUT_TOKENS", 32768))

AGENT_TEMPERATURES = {
    "generation": float(os.environ.get("AI_TEMP_GENERATION", 0.7)),
    "continuation": float(os.environ.get("AI_TEMP_CONTINUATION", 0.7)),
}

# streaming
PLAN_SNIFF_MIN_CHARS = int(os.environ.get("AI_PLAN_SNIFF_MIN_CHARS", 50))
STATUS_LOG_EVERY = int(os.environ.get("AI_STATUS_LOG_EVERY", 50))

# parsing
MIN_FILE_CONTENT = int(os.environ.get("AI_MIN_FILE_CONTENT", 10))
MAX_RESPONSE_CHARS = int(os.environ.get("AI_MAX_RESPONSE_CHARS", 500000))

# continuation
CONTINUATION_BATCH_SIZE = int(os.environ.get("AI_CONTINUATION_BATCH_SIZE", 5))
MAX_CONTINUATION_BATCHES = int(os.environ.get("AI_MAX_CONTINUATION_BATCHES", 10))
CONTINUATION_MAX_RETRIES = int(os.environ.get("AI_CONTINUATION_RETRIES", 3))
CONTINUATION_RETRY_BACKOFF = float(os.environ.get("AI_CONTINUATION_BACKOFF", 1.0))
MIN_ACCEPTED_CONTENT = int(os.environ.get("AI_MIN_ACCEPTED_CONTENT", 20))

# truncation recovery
MIN_RECOVERY_CHARS = int(os.environ.get("AI_MIN_RECOVERY_CHARS", 1000))
PARTIAL_SALVAGE_MIN = int(os.environ.get("AI_PARTIAL_SALVAGE_MIN", 100))
EMERGENCY_MIN_CHARS = int(os.environ.get("AI_EMERGENCY_MIN_CHARS", 5000))
EMERGENCY_BLOCK_MIN = int(os.environ.get("AI_EMERGENCY_BLOCK_MIN", 200))
TRUNCATION_RETRY_MAX = int(os.environ.get("AI_TRUNCATION_RETRY_MAX", 3))

# http streaming
STREAM_CHUNK_SZ = int(os.environ.get("AI_STREAM_CHUNK_SZ", 1024))
