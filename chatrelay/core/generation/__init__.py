from .llm import Delta, GenerationEngine, classify_generation_error, to_model_messages
from .title import generate_title_from_message, placeholder_title
from .usage import build_usage_snapshot

__all__ = [
    "Delta",
    "GenerationEngine",
    "classify_generation_error",
    "to_model_messages",
    "generate_title_from_message",
    "placeholder_title",
    "build_usage_snapshot",
]
