"""ID 生成ユーティリティ。

Firestore のドキュメント ID はパス制約に抵触しない文字だけで構成し、
コレクションを一目で判別できるよう短い prefix を付けた UUID を使用する。
"""

from __future__ import annotations

import uuid


def _prefixed(prefix: str) -> str:
    return f"{prefix}:{uuid.uuid4().hex}"


def generate_bidirectional_exercise_id() -> str:
    return _prefixed("bx")


def generate_review_id() -> str:
    return _prefixed("br")


def generate_exercise_id() -> str:
    """書き取り問題の新規 ID を生成する。"""

    return _prefixed("ex")


def generate_blog_post_id() -> str:
    return _prefixed("bp")


def generate_curriculum_path_id() -> str:
    return _prefixed("cp")


def generate_curriculum_node_id() -> str:
    return _prefixed("cn")
