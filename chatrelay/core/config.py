# chatrelay/core/config.py
import os

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./chatrelay.db")

# Durable channel for resumable streams. Unset disables resumption;
# "memory://" keeps buffers in-process, "redis://..." uses Redis streams.
STREAM_BROKER_URL = os.getenv("STREAM_BROKER_URL") or None

STREAM_RETENTION_SECONDS = float(os.getenv("STREAM_RETENTION_SECONDS", "60"))
STREAM_TOMBSTONE_SECONDS = float(os.getenv("STREAM_TOMBSTONE_SECONDS", "86400"))
STREAM_IDLE_TIMEOUT_SECONDS = float(os.getenv("STREAM_IDLE_TIMEOUT_SECONDS", "60"))

# An assistant message younger than this is replayed as a catch-up event
# when its stream buffer is already gone.
CATCH_UP_FRESHNESS_SECONDS = float(os.getenv("CATCH_UP_FRESHNESS_SECONDS", "15"))

LLM_BASE_URL = os.getenv("LLM_BASE_URL", "https://openrouter.ai/api/v1")
LLM_API_KEY = os.getenv("LLM_API_KEY", "")

TITLE_MODEL = os.getenv("TITLE_MODEL", "google/gemini-2.5-flash")

MAX_MESSAGES_PER_DAY = int(os.getenv("MAX_MESSAGES_PER_DAY", "100"))

CORS_ALLOW_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ALLOW_ORIGINS", "*").split(",")
    if origin.strip()
]

# Public model ids the client may select, mapped to the provider model name.
CHAT_MODELS = {
    "chat-model": {
        "name": "Gemini 2.5 Pro",
        "description": "General purpose multimodal chat model.",
        "provider_model": "google/gemini-2.5-pro",
        "reasoning": False,
    },
    "chat-model-reasoning": {
        "name": "Gemini 2.5 Pro Thinking",
        "description": "Chat model that streams its reasoning before answering.",
        "provider_model": "google/gemini-2.5-pro",
        "reasoning": True,
    },
}

TITLE_PROMPT = """
- you will generate a short title based on the first message a user begins a conversation with
- ensure it is not more than 80 characters long
- the title should be a summary of the user's message
- do not use quotes or colons
"""

SYSTEM_PROMPT = (
    "You are a friendly assistant! Keep your responses concise and helpful."
)
