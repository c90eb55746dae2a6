import os
from pathlib import Path

PACKAGE_DIR = Path(__file__).resolve().parent

# Database
DATABASE_URL = os.getenv("DATABASE_URL")
if not DATABASE_URL:
    raise RuntimeError("DATABASE_URL is not set in the environment.")

# Documents loaded once per process
SCHEMA_PATH = Path(os.getenv("SCHEMA_PATH", str(PACKAGE_DIR / "data" / "schema.json")))
AI_CONFIG_PATH = Path(os.getenv("AI_CONFIG_PATH", str(PACKAGE_DIR / "data" / "ai_config.json")))

# Overrides the apiKey stored in the AI config file
GEMINI_API_KEY = os.getenv("GEMINI_API_KEY")

# Limits
QUERY_TIMEOUT_MS = int(os.getenv("QUERY_TIMEOUT_MS", "15000"))
MAX_ROWS_FOR_LLM = int(os.getenv("MAX_ROWS_FOR_LLM", "50"))
MAX_FIELD_CHARS = int(os.getenv("MAX_FIELD_CHARS", "100"))
LLM_TIMEOUT_SECONDS = float(os.getenv("LLM_TIMEOUT_SECONDS", "60"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# User-visible texts
GENERIC_ERROR_MESSAGE = "Oops, something went wrong. Try again!"
HTML_PLACEHOLDER = "View formatted results below"
