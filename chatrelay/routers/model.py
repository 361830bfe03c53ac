# chatrelay/routers/model.py
from typing import List

from fastapi import APIRouter

from chatrelay.core.config import CHAT_MODELS
from chatrelay.schemas.chat import ChatModelResponse

router = APIRouter()

@router.get("", response_model=List[ChatModelResponse])
def list_models():
    """
    List the chat models a client may pass as `selectedModel`.
    """
    return [
        ChatModelResponse(
            id=model_id,
            name=info["name"],
            description=info["description"],
            reasoning=info["reasoning"],
        )
        for model_id, info in CHAT_MODELS.items()
    ]
