from fastapi import APIRouter, Depends

from ..auth import get_current_user, is_admin, is_premium_user
from ..billing import PLANS
from ..config import settings

router = APIRouter(tags=["config"])


@router.get("/api/config")
def get_runtime_config(user: dict = Depends(get_current_user)) -> dict[str, object]:
    """Expose runtime settings the frontend needs.

    無料枠の上限や TTS の文字数上限をフロントエンドと同期させるために返す。
    """
    return {
        "request_timeout_ms": settings.llm_timeout_ms,
        "tts_text_max_length": settings.tts_text_max_length,
        "free_limits": {
            "dictation_exercises": settings.free_exercise_limit,
            "bidirectional_exercises": settings.free_bidirectional_exercise_limit,
            "vocabulary_export": settings.free_vocabulary_export_limit,
        },
        "plans": [
            {"plan_id": p.plan_id, "name": p.name, "unit_amount": p.unit_amount, "interval": p.interval}
            for p in PLANS.values()
        ],
        "is_premium": is_premium_user(user),
        "is_admin": is_admin(user),
    }
