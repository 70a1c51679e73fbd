from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from ..curriculum import NodeStatus


class CurriculumPathCreate(BaseModel):
    """Admin request for a new curriculum path / カリキュラムパスの作成リクエスト。"""

    language: str = Field(min_length=1, max_length=32)
    level: str = Field(min_length=2, max_length=2)
    title: str = Field(min_length=1, max_length=200)
    description: str | None = Field(default=None, max_length=2000)


class CurriculumPath(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    language: str
    level: str
    title: str
    description: str = ""
    created_at: str
    updated_at: str


class CurriculumNodeCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: str | None = Field(default=None, max_length=2000)
    position: int = Field(ge=0)
    is_bonus: bool = False
    exercise_title: str = Field(min_length=1, max_length=200)
    exercise_text: str = Field(min_length=1, max_length=4000)


class CurriculumNode(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    path_id: str
    title: str
    description: str = ""
    position: int
    is_bonus: bool = False
    exercise_title: str
    exercise_text: str
    status: NodeStatus = NodeStatus.locked
    progress_count: int = 0


class StartPathRequest(BaseModel):
    language: str = Field(min_length=1, max_length=32)
    level: str = Field(min_length=2, max_length=2)


class UserCurriculumPath(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    path_id: str
    language: str
    level: str
    title: str
    current_node_id: str | None = None
    created_at: str
    updated_at: str


class NodeAttemptRequest(BaseModel):
    user_input: str = Field(max_length=4000)


class NodeProgress(BaseModel):
    """Per-learner node progress. next_node_id is set only when this call advanced the learner."""

    node_id: str
    completion_count: int = 0
    is_completed: bool = False
    next_node_id: str | None = None


class NodeAttemptResult(BaseModel):
    accuracy: int = Field(ge=0, le=100)
    missing_words: list[str] = Field(default_factory=list)
    extra_words: list[str] = Field(default_factory=list)
    counted_as_completion: bool
    progress: NodeProgress
