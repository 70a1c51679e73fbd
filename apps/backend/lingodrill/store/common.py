from __future__ import annotations

import hashlib
from collections.abc import Callable, Iterable, Iterator, Mapping, Sequence
from datetime import UTC, date, datetime
from typing import Any, TypeVar

from google.api_core import exceptions as gexc
from google.cloud import firestore

from ..logging import logger

T = TypeVar("T")

TRANSACTION_MAX_ATTEMPTS = 5


def now_iso(now: datetime | None = None) -> str:
    """秒精度・UTC の ISO8601 文字列を返す。

    期日 (`due_at`) は文字列比較で範囲検索するため、全ドキュメントで
    同じ書式になるよう必ずこの関数を経由して生成する。"""

    moment = now or datetime.now(UTC)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return moment.astimezone(UTC).replace(microsecond=0).isoformat()


def today_iso(today: date | None = None) -> str:
    return (today or datetime.now(UTC).date()).isoformat()


def normalize_non_negative_int(value: Any) -> int:
    """与えられた値を非負整数に正規化する。"""

    try:
        ivalue = int(value)
    except (TypeError, ValueError):
        return 0
    return ivalue if ivalue >= 0 else 0


def stable_doc_id(prefix: str, *parts: str) -> str:
    """複合キーから Firestore のパス制約に触れない決定的な ID を作る。

    `/` を含み得るユーザー入力（単語・言語名）をそのまま ID に使えないため、
    正規化したキーを SHA-256 で短縮する。同じキーは常に同じ ID となり upsert に使える。"""

    joined = "\x1f".join(str(part or "").strip().lower() for part in parts)
    digest = hashlib.sha256(joined.encode("utf-8")).hexdigest()[:32]
    return f"{prefix}:{digest}"


def extract_count_from_aggregation(aggregation: Sequence[Any] | None) -> int:
    """Extracts the numeric count from Firestore aggregation results."""

    if not aggregation:
        return 0
    result = aggregation[0]
    if isinstance(result, Sequence) and not isinstance(result, (str, bytes)):
        # google-cloud-firestore は [[AggregationResult]] の二重リストを返す。
        result = result[0] if result else None
    if result is None:
        return 0
    count_value: Any | None = None
    try:
        count_value = result["count"]  # type: ignore[index]
    except (KeyError, TypeError):
        aggregate_fields = getattr(result, "aggregate_fields", None)
        if isinstance(aggregate_fields, Mapping):
            count_value = aggregate_fields.get("count")
    if count_value is None and getattr(result, "alias", None) == "count":
        count_value = getattr(result, "value", None)
    return int(count_value or 0)


def count_query(query: firestore.Query) -> int:
    return extract_count_from_aggregation(query.count(alias="count").get())


def snapshot_to_record(doc: firestore.DocumentSnapshot) -> dict[str, Any]:
    data = doc.to_dict() or {}
    data["id"] = doc.id
    return data


def delete_in_batches(
    client: firestore.Client, docs: Sequence[firestore.DocumentSnapshot], batch_size: int = 450
) -> int:
    """Delete snapshots with WriteBatch, respecting Firestore's 500-write limit."""

    deleted = 0
    for start in range(0, len(docs), batch_size):
        batch = client.batch()
        for doc in docs[start : start + batch_size]:
            batch.delete(doc.reference)
            deleted += 1
        batch.commit()
    return deleted


def coerce_snapshot(candidate: Any) -> firestore.DocumentSnapshot | None:
    """Normalize `transaction.get` results (snapshot or generator) into a snapshot."""

    if candidate is None:
        return None
    if hasattr(candidate, "exists"):
        return candidate  # type: ignore[return-value]
    if isinstance(candidate, Iterator):
        return next(candidate, None)
    if isinstance(candidate, Iterable) and not isinstance(candidate, (str, bytes, Mapping)):
        return next(iter(candidate), None)
    return None


def _rollback_quietly(transaction: firestore.Transaction, operation: str) -> None:
    if not getattr(transaction, "in_progress", False):
        return
    try:
        transaction._rollback()
    except (ValueError, gexc.GoogleAPIError) as exc:
        logger.warning(
            "firestore_transaction_rollback_failed",
            operation=operation,
            error=str(exc),
            error_class=exc.__class__.__name__,
        )


def run_in_transaction(
    client: firestore.Client,
    body: Callable[[firestore.Transaction], T],
    *,
    operation: str,
    max_attempts: int = TRANSACTION_MAX_ATTEMPTS,
) -> T:
    """Run a read-modify-write `body` inside one Firestore transaction.

    読み取りは必ず `transaction.get` 経由で行い、書き込みは commit 時にまとめて反映される。
    同時更新で commit が Aborted になった場合は本体ごと再実行し、カウンタの加算漏れを防ぐ。
    """

    attempt = 0
    while True:
        attempt += 1
        transaction = client.transaction()
        transaction._begin()
        try:
            result = body(transaction)
            transaction._commit()
            return result
        except gexc.Aborted as exc:
            _rollback_quietly(transaction, operation)
            logger.warning(
                "firestore_transaction_aborted",
                operation=operation,
                attempt=attempt,
                error=str(exc),
            )
            if attempt >= max_attempts:
                raise
        except Exception:
            _rollback_quietly(transaction, operation)
            raise
