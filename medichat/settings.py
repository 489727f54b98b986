"""
Centralized configuration for MediChat.
Every tunable is an env var with a sensible default; a local .env is honoured.
"""

import os
from dotenv import load_dotenv

load_dotenv()

# --- Reasoning service (Gemini) ---
GOOGLE_API_KEY = os.getenv("GOOGLE_API_KEY")
INTAKE_MODEL = os.getenv("INTAKE_MODEL", "gemini-2.0-flash")
SUMMARY_MODEL = os.getenv("SUMMARY_MODEL", INTAKE_MODEL)
INTAKE_MAX_OUTPUT_TOKENS = int(os.getenv("INTAKE_MAX_OUTPUT_TOKENS", "500"))
INTAKE_TEMPERATURE = float(os.getenv("INTAKE_TEMPERATURE", "0.7"))
SUMMARY_MAX_OUTPUT_TOKENS = int(os.getenv("SUMMARY_MAX_OUTPUT_TOKENS", "1500"))
SUMMARY_TEMPERATURE = float(os.getenv("SUMMARY_TEMPERATURE", "0.3"))
REASONING_TIMEOUT_SECONDS = float(os.getenv("REASONING_TIMEOUT_SECONDS", "30"))
REASONING_MAX_RETRIES = int(os.getenv("REASONING_MAX_RETRIES", "2"))

# --- Conversation store ---
CONVERSATION_STORE = os.getenv("CONVERSATION_STORE", "memory")  # "memory" | "gcs"
GCS_BUCKET_NAME = os.getenv("GCS_BUCKET_NAME", "medichat_dev")
PERSISTENCE_TIMEOUT_SECONDS = float(os.getenv("PERSISTENCE_TIMEOUT_SECONDS", "15"))

# --- Intake limits ---
MAX_MESSAGE_LENGTH = int(os.getenv("MAX_MESSAGE_LENGTH", "5000"))
QUEUE_IDLE_TIMEOUT_SECONDS = float(os.getenv("QUEUE_IDLE_TIMEOUT_SECONDS", "300"))
INBOX_MAX_PER_USER = int(os.getenv("INBOX_MAX_PER_USER", "100"))

# --- Server ---
PORT = int(os.getenv("PORT", "8080"))
