import structlog

from chatrelay.core.config import TITLE_MODEL, TITLE_PROMPT
from chatrelay.core.generation.llm import GenerationEngine

logger = structlog.get_logger("chatrelay.title")

MAX_TITLE_LENGTH = 80


def placeholder_title(text: str) -> str:
    """Title shown until the generated one lands."""
    text = " ".join(text.split())
    if not text:
        return "New chat"
    if len(text) <= MAX_TITLE_LENGTH:
        return text
    return text[: MAX_TITLE_LENGTH - 3].rstrip() + "..."


async def generate_title_from_message(engine: GenerationEngine, text: str) -> str:
    conversation = [
        {"role": "system", "content": TITLE_PROMPT},
        {"role": "user", "content": text},
    ]
    title = await engine.complete(TITLE_MODEL, conversation)
    title = title.strip().replace('"', "").replace(":", "")
    return placeholder_title(title) if title else placeholder_title(text)
