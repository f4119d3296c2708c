from __future__ import annotations

from fastapi import APIRouter

from billbot.api.deps import get_available_models
from billbot.llm_client import get_model
from billbot.models.schemas import ModelInfo, ModelsResponse

router = APIRouter(prefix="/api/models", tags=["models"])


@router.get("", response_model=ModelsResponse)
async def list_models():
    """List OpenRouter models available for chat."""
    models = get_available_models()
    return ModelsResponse(models=[ModelInfo(**m) for m in models], default=get_model())
