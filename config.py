"""Configuration loader for the caller routing IVR."""

import os
from dotenv import load_dotenv

load_dotenv()


def _flag(name, default):
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


# Routing
TARGET_NUMBER = os.getenv("TARGET_NUMBER", "")
SERVICE_NUMBER = os.getenv("SERVICE_NUMBER", "")

# Retry policy
MAX_ATTEMPTS = int(os.getenv("MAX_ATTEMPTS", "4"))
# 0 keeps the verification loop uncapped
MAX_VERIFY_CYCLES = int(os.getenv("MAX_VERIFY_CYCLES", "0"))

# CSR availability window
CSR_CUTOFF_HOUR = int(os.getenv("CSR_CUTOFF_HOUR", "20"))
CSR_TIMEZONE = os.getenv("CSR_TIMEZONE", "America/Chicago")

# Flow shape: "speech" classifies a spoken question, "keypad" asks for 1 or 2
IVR_FLOW = os.getenv("IVR_FLOW", "speech").strip().lower()
MINI_MIRANDA = _flag("MINI_MIRANDA", "true")

# Question classification: "keyword" or "openai"
CLASSIFIER = os.getenv("CLASSIFIER", "keyword").strip().lower()
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
OPENAI_API_URL = os.getenv("OPENAI_API_URL", "https://api.openai.com/v1/chat/completions")
AI_MODEL = os.getenv("AI_MODEL", "gpt-4o-mini")

# Voices (SignalWire say: voices)
VOICE_EN = os.getenv("VOICE_EN", "polly.Joanna")
VOICE_ES = os.getenv("VOICE_ES", "polly.Lupe")

# Storage
DB_PATH = os.getenv("DB_PATH", "ivr.db")
IDENTITY_SEED_FILE = os.getenv("IDENTITY_SEED_FILE", "")
CALL_STATE_TTL_HOURS = int(os.getenv("CALL_STATE_TTL_HOURS", "24"))

# Server
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "3000"))
SWML_ROUTE = os.getenv("SWML_ROUTE", "/ivr")
PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "")
SWML_BASIC_AUTH_USER = os.getenv("SWML_BASIC_AUTH_USER", "")
SWML_BASIC_AUTH_PASSWORD = os.getenv("SWML_BASIC_AUTH_PASSWORD", "")


def validate():
    """Warn about missing required configuration."""
    missing = []
    if not TARGET_NUMBER:
        missing.append("TARGET_NUMBER")
    if not SERVICE_NUMBER:
        missing.append("SERVICE_NUMBER")
    if not PUBLIC_BASE_URL:
        missing.append("PUBLIC_BASE_URL")
    if CLASSIFIER == "openai" and not OPENAI_API_KEY:
        missing.append("OPENAI_API_KEY")
    if missing:
        print(f"WARNING: Missing config: {', '.join(missing)}")
        print("Some features may not work. Copy .env.example to .env and fill in values.")
