from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from ..auth import get_current_user, require_admin
from ..curriculum import next_node, node_statuses, normalize_level
from ..logging import logger
from ..models.curriculum import (
    CurriculumNode,
    CurriculumNodeCreate,
    CurriculumPath,
    CurriculumPathCreate,
    NodeAttemptRequest,
    NodeAttemptResult,
    NodeProgress,
    StartPathRequest,
    UserCurriculumPath,
)
from ..store import store
from ..text_compare import COMPLETION_ACCURACY, score_dictation

router = APIRouter(prefix="/api/curriculum", tags=["curriculum"])


def _level_or_422(level: str) -> str:
    try:
        return normalize_level(level)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc


def _path_or_404(path_id: str) -> dict:
    path = store.curriculum.get_path(path_id)
    if path is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Curriculum path not found")
    return path


def _node_or_404(node_id: str) -> dict:
    node = store.curriculum.get_node(node_id)
    if node is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Curriculum node not found")
    return node


def _user_path_or_404(user_id: str, path_id: str) -> dict:
    user_path = store.curriculum.get_user_path(user_id, path_id)
    if user_path is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Curriculum path not started")
    return user_path


@router.get("/paths", response_model=list[CurriculumPath])
def list_paths(
    language: str = Query(min_length=1, max_length=32),
    level: str | None = Query(default=None, max_length=2),
    _: dict = Depends(get_current_user),
) -> list[CurriculumPath]:
    """List paths for a language, ordered A1 → C2."""

    records = store.curriculum.list_paths(
        language.strip().lower(), _level_or_422(level) if level else None
    )
    return [CurriculumPath.model_validate(r) for r in records]


@router.post("/paths", response_model=CurriculumPath, status_code=status.HTTP_201_CREATED)
def create_path(payload: CurriculumPathCreate, admin: dict = Depends(require_admin)) -> CurriculumPath:
    record = store.curriculum.create_path(
        language=payload.language.strip().lower(),
        level=_level_or_422(payload.level),
        title=payload.title.strip(),
        description=payload.description,
    )
    logger.info(
        "curriculum_path_created",
        path_id=record["id"],
        language=record["language"],
        level=record["level"],
        admin_id=admin["google_sub"],
    )
    return CurriculumPath.model_validate(record)


@router.post(
    "/paths/{path_id}/nodes", response_model=CurriculumNode, status_code=status.HTTP_201_CREATED
)
def add_node(path_id: str, payload: CurriculumNodeCreate, _: dict = Depends(require_admin)) -> CurriculumNode:
    _path_or_404(path_id)
    record = store.curriculum.add_node(
        path_id,
        title=payload.title.strip(),
        description=payload.description,
        position=payload.position,
        is_bonus=payload.is_bonus,
        exercise_title=payload.exercise_title.strip(),
        exercise_text=payload.exercise_text.strip(),
    )
    logger.info("curriculum_node_created", path_id=path_id, node_id=record["id"], position=record["position"])
    return CurriculumNode.model_validate(record)


@router.post("/start", response_model=UserCurriculumPath)
def start_path(
    payload: StartPathRequest, response: Response, user: dict = Depends(get_current_user)
) -> UserCurriculumPath:
    """Start the path matching (language, level). 開始済みなら既存の進捗をそのまま返す。"""

    user_id = user["google_sub"]
    language = payload.language.strip().lower()
    level = _level_or_422(payload.level)
    paths = store.curriculum.list_paths(language, level)
    if not paths:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No curriculum path found for level {level} and language {language}",
        )
    record, created = store.curriculum.start_path(user_id, paths[0])
    if created:
        response.status_code = status.HTTP_201_CREATED
        logger.info("curriculum_path_started", user_id=user_id, path_id=record["path_id"])
    return UserCurriculumPath.model_validate(record)


@router.get("/me", response_model=list[UserCurriculumPath])
def list_my_paths(
    language: str | None = Query(default=None, max_length=32),
    user: dict = Depends(get_current_user),
) -> list[UserCurriculumPath]:
    records = store.curriculum.list_user_paths(
        user["google_sub"], language.strip().lower() if language else None
    )
    return [UserCurriculumPath.model_validate(r) for r in records]


@router.get("/paths/{path_id}/nodes", response_model=list[CurriculumNode])
def list_nodes(path_id: str, user: dict = Depends(get_current_user)) -> list[CurriculumNode]:
    """Nodes in position order with the caller's status and completion count.

    未開始のパスでは現在地がないため、先頭ノードだけが available になる。
    """

    _path_or_404(path_id)
    user_id = user["google_sub"]
    nodes = store.curriculum.list_nodes(path_id)
    user_path = store.curriculum.get_user_path(user_id, path_id)
    progress = store.curriculum.list_progress(user_id, path_id)
    completed = {node_id for node_id, row in progress.items() if row.get("is_completed")}
    statuses = node_statuses(nodes, completed, (user_path or {}).get("current_node_id"))
    return [
        CurriculumNode.model_validate(
            {
                **node,
                "status": node_status,
                "progress_count": progress.get(node["id"], {}).get("completion_count", 0),
            }
        )
        for node, node_status in zip(nodes, statuses)
    ]


def _record_completion(user_id: str, node: dict, *, mark_completed: bool) -> dict:
    following = next_node(store.curriculum.list_nodes(node["path_id"]), node)
    return store.curriculum.record_node_completion(
        user_id,
        node,
        next_node_id=following["id"] if following else None,
        mark_completed=mark_completed,
    )


@router.post("/nodes/{node_id}/attempts", response_model=NodeAttemptResult)
def submit_node_attempt(
    node_id: str, payload: NodeAttemptRequest, user: dict = Depends(get_current_user)
) -> NodeAttemptResult:
    """Score a dictation attempt on the node's exercise.

    正解率が COMPLETION_ACCURACY 以上なら完了回数を加算し、3 回でノード完了・次ノードへ進む。
    """

    user_id = user["google_sub"]
    node = _node_or_404(node_id)
    user_path = _user_path_or_404(user_id, node["path_id"])

    result = score_dictation(node["exercise_text"], payload.user_input)
    counted = result.accuracy >= COMPLETION_ACCURACY
    if counted:
        progress = _record_completion(user_id, node, mark_completed=False)
    else:
        progress = store.curriculum.list_progress(user_id, node["path_id"]).get(node_id) or {}
    try:
        store.activity.record_activity(
            user_id, user_path["language"], exercises_completed=1 if counted else 0
        )
    except Exception as exc:
        logger.warning("activity_record_failed", user_id=user_id, error=str(exc))
    logger.info(
        "curriculum_attempt_scored",
        node_id=node_id,
        user_id=user_id,
        accuracy=result.accuracy,
        counted_as_completion=counted,
        completion_count=progress.get("completion_count", 0),
        next_node_id=progress.get("next_node_id"),
    )
    return NodeAttemptResult(
        accuracy=result.accuracy,
        missing_words=result.missing_words,
        extra_words=result.extra_words,
        counted_as_completion=counted,
        progress=NodeProgress.model_validate({"node_id": node_id, **progress}),
    )


@router.post("/nodes/{node_id}/complete", response_model=NodeProgress)
def mark_node_completed(node_id: str, user: dict = Depends(get_current_user)) -> NodeProgress:
    user_id = user["google_sub"]
    node = _node_or_404(node_id)
    _user_path_or_404(user_id, node["path_id"])
    progress = _record_completion(user_id, node, mark_completed=True)
    logger.info("curriculum_node_marked_completed", node_id=node_id, user_id=user_id)
    return NodeProgress.model_validate(progress)


@router.delete("/paths/{path_id}/progress", status_code=status.HTTP_204_NO_CONTENT)
def reset_progress(path_id: str, user: dict = Depends(get_current_user)) -> Response:
    user_id = user["google_sub"]
    _user_path_or_404(user_id, path_id)
    deleted = store.curriculum.reset_progress(user_id, path_id)
    logger.info("curriculum_progress_reset", path_id=path_id, user_id=user_id, deleted=deleted)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
