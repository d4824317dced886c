from __future__ import annotations

import sqlite3
import threading
from dataclasses import dataclass, field
from itertools import islice
from typing import Iterable, Optional, Sequence

from reindex.domain.errors import ConflictError, NotFoundError
from reindex.domain.models import (
    ItemTask,
    ItemTaskView,
    ProgressView,
    ResultView,
    TypeTaskView,
)
from reindex.domain.states import Outcome, Progress
from reindex.logging import get_logger

from .db import begin_immediate, commit, rollback

_LOG = get_logger(__name__)

# Rows inserted per executemany() while materializing one type's listing.
_INSERT_CHUNK = 500


@dataclass
class QueueRepo:
    """
    Repository encapsulating all SQL access to a queue store.

    Important invariants:
    - One connection is shared by every thread of a run; all statements on it
      execute under `lock`, and every multi-statement transaction holds the
      lock from BEGIN to COMMIT/ROLLBACK.
    - A type's listed items and its DONE transition commit together.
    - Removing a processed item and appending its result commit together.
    - Only clear_errors() moves FAILED rows back to ENQUEUED.
    """
    conn: sqlite3.Connection
    lock: threading.RLock = field(default_factory=threading.RLock)

    # -------------------------
    # Transaction primitives
    # -------------------------

    def begin(self) -> None:
        begin_immediate(self.conn)

    def commit(self) -> None:
        commit(self.conn)

    def rollback(self) -> None:
        rollback(self.conn)

    # -------------------------
    # Type queue
    # -------------------------

    def seed_types(self, types: Sequence[str], now_ms: int) -> None:
        """
        Inserts one ENQUEUED row per type in a single transaction.
        A duplicate type violates the UNIQUE constraint and rolls back the lot.
        """
        with self.lock:
            try:
                self.begin()
                for type_name in types:
                    self.conn.execute(
                        "INSERT INTO types_queue(type, progress, updated_at) VALUES (?, ?, ?);",
                        (type_name, Progress.ENQUEUED.value, now_ms),
                    )
                self.commit()
            except Exception:
                self.rollback()
                raise

    def claim_next_type(self, now_ms: int) -> Optional[str]:
        """
        Selects the next ENQUEUED type (table order) and marks it RUNNING.

        Returns the type identifier, or None once nothing is left to list.
        """
        with self.lock:
            try:
                self.begin()

                row = self.conn.execute(
                    """
                    SELECT type
                    FROM types_queue
                    WHERE progress = ?
                    ORDER BY id ASC
                    LIMIT 1;
                    """,
                    (Progress.ENQUEUED.value,),
                ).fetchone()

                if not row:
                    self.commit()
                    return None

                self.conn.execute(
                    """
                    UPDATE types_queue
                    SET progress = ?, updated_at = ?
                    WHERE type = ? AND progress = ?;
                    """,
                    (Progress.RUNNING.value, now_ms, row["type"], Progress.ENQUEUED.value),
                )

                self.commit()
                return row["type"]
            except Exception:
                self.rollback()
                raise

    def enqueue_items(self, type_name: str, urls: Iterable[str], now_ms: int) -> int:
        """
        Inserts every listed resource of `type_name` and marks the type DONE.

        `urls` is consumed inside the transaction: an exception raised while
        iterating it (or while inserting) rolls back every insert for this type.

        Returns the number of items enqueued.
        """
        with self.lock:
            try:
                self.begin()

                count = 0
                it = iter(urls)
                while True:
                    chunk = [
                        (type_name, str(url), Progress.ENQUEUED.value, now_ms)
                        for url in islice(it, _INSERT_CHUNK)
                    ]
                    if not chunk:
                        break
                    self.conn.executemany(
                        "INSERT INTO item_queue(type, url, progress, updated_at) VALUES (?, ?, ?, ?);",
                        chunk,
                    )
                    count += len(chunk)

                updated = self.conn.execute(
                    """
                    UPDATE types_queue
                    SET progress = ?, updated_at = ?
                    WHERE type = ? AND progress = ?;
                    """,
                    (Progress.DONE.value, now_ms, type_name, Progress.RUNNING.value),
                ).rowcount

                if updated == 0:
                    raise ConflictError(
                        "Type is not RUNNING; cannot mark done",
                        details={"type": type_name},
                    )

                self.commit()
                return count
            except Exception:
                self.rollback()
                raise

    def mark_type_failed(self, type_name: str, now_ms: int) -> bool:
        """
        RUNNING -> FAILED after a failed listing. Returns False when the type
        was not RUNNING (already DONE or FAILED), leaving it untouched.
        """
        with self.lock:
            updated = self.conn.execute(
                """
                UPDATE types_queue
                SET progress = ?, updated_at = ?
                WHERE type = ? AND progress = ?;
                """,
                (Progress.FAILED.value, now_ms, type_name, Progress.RUNNING.value),
            ).rowcount
        return updated > 0

    def count_enqueued_types(self) -> int:
        with self.lock:
            row = self.conn.execute(
                "SELECT COUNT(*) AS c FROM types_queue WHERE progress = ?;",
                (Progress.ENQUEUED.value,),
            ).fetchone()
        return int(row["c"])

    def is_done_queueing(self) -> bool:
        """True once no type is waiting to be listed."""
        return self.count_enqueued_types() == 0

    # -------------------------
    # Item queue
    # -------------------------

    def poll_items(self, limit: int, now_ms: int) -> list[ItemTask]:
        """
        Takes up to `limit` ENQUEUED items out of the queue.

        Each item is marked RUNNING in its own short transaction. If one of
        those fails, the item is left ENQUEUED and the batch ends there.
        """
        if limit <= 0:
            return []

        with self.lock:
            rows = self.conn.execute(
                """
                SELECT id, type, url
                FROM item_queue
                WHERE progress = ?
                ORDER BY id ASC
                LIMIT ?;
                """,
                (Progress.ENQUEUED.value, limit),
            ).fetchall()

            items: list[ItemTask] = []
            for row in rows:
                item = ItemTask(id=int(row["id"]), type=row["type"], url=row["url"])
                try:
                    self.begin()
                    self.conn.execute(
                        "UPDATE item_queue SET progress = ?, updated_at = ? WHERE id = ? AND progress = ?;",
                        (Progress.RUNNING.value, now_ms, item.id, Progress.ENQUEUED.value),
                    )
                    self.commit()
                except Exception:
                    self.rollback()
                    _LOG.exception(
                        "Could not take item out of queue: id=%d type=%s url=%s",
                        item.id,
                        item.type,
                        item.url,
                    )
                    break
                items.append(item)

        return items

    def complete_item(self, item: ItemTask, payload: Optional[str], now_ms: int) -> None:
        """
        Removes a processed item and records its result, atomically.
        """
        with self.lock:
            try:
                self.begin()

                deleted = self.conn.execute(
                    "DELETE FROM item_queue WHERE id = ?;",
                    (item.id,),
                ).rowcount
                if deleted == 0:
                    raise ConflictError(
                        "Item is no longer queued; cannot record success",
                        details={"id": item.id, "url": item.url},
                    )

                self._append_result(item, Outcome.SUCCESS, payload, now_ms)

                self.commit()
            except Exception:
                self.rollback()
                raise

    def fail_item(self, item: ItemTask, detail: str, now_ms: int) -> None:
        """
        Marks an item FAILED and records the failure detail, atomically.
        """
        with self.lock:
            try:
                self.begin()

                updated = self.conn.execute(
                    "UPDATE item_queue SET progress = ?, updated_at = ? WHERE id = ?;",
                    (Progress.FAILED.value, now_ms, item.id),
                ).rowcount
                if updated == 0:
                    raise NotFoundError(
                        f"Item not found: {item.id}",
                        details={"id": item.id, "url": item.url},
                    )

                self._append_result(item, Outcome.FAILURE, detail, now_ms)

                self.commit()
            except Exception:
                self.rollback()
                raise

    def count_items(self, progress: Optional[Progress] = None) -> int:
        with self.lock:
            if progress is None:
                row = self.conn.execute("SELECT COUNT(*) AS c FROM item_queue;").fetchone()
            else:
                row = self.conn.execute(
                    "SELECT COUNT(*) AS c FROM item_queue WHERE progress = ?;",
                    (progress.value,),
                ).fetchone()
        return int(row["c"])

    # -------------------------
    # Error accounting
    # -------------------------

    def error_count(self) -> int:
        """FAILED rows across both queues."""
        with self.lock:
            types = self.conn.execute(
                "SELECT COUNT(*) AS c FROM types_queue WHERE progress = ?;",
                (Progress.FAILED.value,),
            ).fetchone()["c"]
            items = self.conn.execute(
                "SELECT COUNT(*) AS c FROM item_queue WHERE progress = ?;",
                (Progress.FAILED.value,),
            ).fetchone()["c"]
        return int(types) + int(items)

    def clear_errors(self, now_ms: int) -> tuple[int, int]:
        """
        Resets FAILED rows to ENQUEUED, one transaction per table.

        Returns (types reset, items reset).
        """
        types = self._reset_progress("types_queue", Progress.FAILED, now_ms)
        items = self._reset_progress("item_queue", Progress.FAILED, now_ms)
        if types or items:
            _LOG.info("Cleared %d failed type(s) and %d failed item(s).", types, items)
        return types, items

    def recover_stale_running(self, now_ms: int) -> tuple[int, int]:
        """
        Resets RUNNING rows to ENQUEUED.

        Only safe when no run is active on this store: RUNNING rows are then
        leftovers of a process that died mid-listing or mid-item, or of items
        whose success could not be saved.

        Returns (types reset, items reset).
        """
        types = self._reset_progress("types_queue", Progress.RUNNING, now_ms)
        items = self._reset_progress("item_queue", Progress.RUNNING, now_ms)
        if types or items:
            _LOG.info("Recovered %d stale RUNNING type(s) and %d item(s).", types, items)
        return types, items

    # -------------------------
    # Read operations (inspection)
    # -------------------------

    def progress_summary(self) -> ProgressView:
        with self.lock:
            type_rows = self.conn.execute(
                "SELECT progress, COUNT(*) AS c FROM types_queue GROUP BY progress;"
            ).fetchall()
            item_rows = self.conn.execute(
                "SELECT progress, COUNT(*) AS c FROM item_queue GROUP BY progress;"
            ).fetchall()
            result_rows = self.conn.execute(
                "SELECT status, COUNT(*) AS c FROM results GROUP BY status;"
            ).fetchall()

        types = {Progress(r["progress"]): int(r["c"]) for r in type_rows}
        items = {Progress(r["progress"]): int(r["c"]) for r in item_rows}
        return ProgressView(
            types=types,
            items=items,
            results={Outcome(r["status"]): int(r["c"]) for r in result_rows},
            error_count=types.get(Progress.FAILED, 0) + items.get(Progress.FAILED, 0),
            done_queueing=types.get(Progress.ENQUEUED, 0) == 0,
        )

    def list_types(self) -> list[TypeTaskView]:
        with self.lock:
            rows = self.conn.execute(
                "SELECT id, type, progress, updated_at FROM types_queue ORDER BY id ASC;"
            ).fetchall()
        return [
            TypeTaskView(
                id=row["id"],
                type=row["type"],
                progress=Progress(row["progress"]),
                updated_at=row["updated_at"],
            )
            for row in rows
        ]

    def get_item(self, item_id: int) -> ItemTaskView:
        with self.lock:
            row = self.conn.execute(
                "SELECT id, type, url, progress, updated_at FROM item_queue WHERE id = ?;",
                (item_id,),
            ).fetchone()
        if not row:
            raise NotFoundError(f"Item not found: {item_id}", details={"id": item_id})
        return _item_view(row)

    def list_items(
        self,
        progress: Optional[Progress] = None,
        limit: int = 200,
        offset: int = 0,
    ) -> tuple[list[ItemTaskView], int]:
        where, params = _where({"progress": progress.value if progress else None})
        with self.lock:
            total = self.conn.execute(
                f"SELECT COUNT(*) AS c FROM item_queue {where};", params
            ).fetchone()["c"]
            rows = self.conn.execute(
                f"""
                SELECT id, type, url, progress, updated_at
                FROM item_queue
                {where}
                ORDER BY id ASC
                LIMIT ? OFFSET ?;
                """,
                (*params, limit, offset),
            ).fetchall()
        return [_item_view(row) for row in rows], int(total)

    def list_results(
        self,
        outcome: Optional[Outcome] = None,
        type_name: Optional[str] = None,
        limit: int = 200,
        offset: int = 0,
    ) -> tuple[list[ResultView], int]:
        where, params = _where({"status": outcome.value if outcome else None, "type": type_name})
        with self.lock:
            total = self.conn.execute(
                f"SELECT COUNT(*) AS c FROM results {where};", params
            ).fetchone()["c"]
            rows = self.conn.execute(
                f"""
                SELECT id, type, url, status, result, created_at
                FROM results
                {where}
                ORDER BY id ASC
                LIMIT ? OFFSET ?;
                """,
                (*params, limit, offset),
            ).fetchall()

        results = [
            ResultView(
                id=row["id"],
                type=row["type"],
                url=row["url"],
                outcome=Outcome(row["status"]),
                result=row["result"],
                created_at=row["created_at"],
            )
            for row in rows
        ]
        return results, int(total)

    # -------------------------
    # Helpers
    # -------------------------

    def _append_result(self, item: ItemTask, outcome: Outcome, result: Optional[str], now_ms: int) -> None:
        self.conn.execute(
            "INSERT INTO results(type, url, status, result, created_at) VALUES (?, ?, ?, ?, ?);",
            (item.type, item.url, outcome.value, result, now_ms),
        )

    def _reset_progress(self, table: str, current: Progress, now_ms: int) -> int:
        with self.lock:
            try:
                self.begin()
                updated = self.conn.execute(
                    f"UPDATE {table} SET progress = ?, updated_at = ? WHERE progress = ?;",
                    (Progress.ENQUEUED.value, now_ms, current.value),
                ).rowcount
                self.commit()
                return int(updated)
            except Exception:
                self.rollback()
                raise


def _item_view(row: sqlite3.Row) -> ItemTaskView:
    return ItemTaskView(
        id=row["id"],
        type=row["type"],
        url=row["url"],
        progress=Progress(row["progress"]),
        updated_at=row["updated_at"],
    )


def _where(filters: dict[str, Optional[str]]) -> tuple[str, tuple[str, ...]]:
    # Column names come from this module only; values are always bound.
    active = {k: v for k, v in filters.items() if v is not None}
    if not active:
        return "", ()
    clause = " AND ".join(f"{col} = ?" for col in active)
    return f"WHERE {clause}", tuple(active.values())
