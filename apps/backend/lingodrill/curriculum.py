"""Curriculum path progression rules.

カリキュラムはレベル別のパスと、position 順に並んだノードで構成される。
ノードは高精度 (COMPLETION_ACCURACY 以上) の書き取りを NODE_COMPLETIONS_REQUIRED 回
達成すると完了になり、学習者の現在地は次の position のノードへ進む。
"""

from __future__ import annotations

from collections.abc import Collection, Mapping, Sequence
from enum import Enum
from typing import Any

NODE_COMPLETIONS_REQUIRED = 3

CEFR_LEVELS: tuple[str, ...] = ("A1", "A2", "B1", "B2", "C1", "C2")


class NodeStatus(str, Enum):
    completed = "completed"
    current = "current"
    available = "available"
    locked = "locked"


def normalize_level(level: str) -> str:
    """`b1` のような入力を `B1` に揃える。未知のレベルは ValueError。"""

    normalized = (level or "").strip().upper()
    if normalized not in CEFR_LEVELS:
        raise ValueError(f"Unknown level: {level!r}")
    return normalized


def level_rank(level: str | None) -> int:
    try:
        return CEFR_LEVELS.index((level or "").strip().upper())
    except ValueError:
        return len(CEFR_LEVELS)


def node_statuses(
    nodes: Sequence[Mapping[str, Any]],
    completed_node_ids: Collection[str],
    current_node_id: str | None,
) -> list[NodeStatus]:
    """Status for each node, given nodes sorted by position.

    完了 > 現在地 > 利用可能 (先頭ノード、または直前ノードが完了) > ロック の優先順で判定する。
    """

    statuses: list[NodeStatus] = []
    for index, node in enumerate(nodes):
        if node["id"] in completed_node_ids:
            statuses.append(NodeStatus.completed)
        elif node["id"] == current_node_id:
            statuses.append(NodeStatus.current)
        elif index == 0 or nodes[index - 1]["id"] in completed_node_ids:
            statuses.append(NodeStatus.available)
        else:
            statuses.append(NodeStatus.locked)
    return statuses


def next_node(nodes: Sequence[Mapping[str, Any]], node: Mapping[str, Any]) -> Mapping[str, Any] | None:
    """The node at position + 1, if the path has one."""

    wanted = int(node.get("position", 0)) + 1
    for candidate in nodes:
        if int(candidate.get("position", 0)) == wanted:
            return candidate
    return None
