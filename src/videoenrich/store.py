"""Entity Store: durable VideoEntity records keyed by id.

The pipeline talks to storage only through :class:`EntityStore`. The bundled
:class:`SqliteEntityStore` applies each partial update in one transaction and
validates the merged record first, so a torn or out-of-order write can never
reach disk.
"""

from __future__ import annotations

import json
import sqlite3
import threading
import time
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterable, Iterator, List, Optional, Protocol, runtime_checkable

from .errors import EntityNotFound, InvariantViolation
from .ingest.policy import validate_source_url
from .models import Analysis, PipelineStatus, StatusKind, Variant, VideoEntity
from .utils import state_dir, utc_iso as _utc_iso

_UNSET: Any = object()
_RUNNING_VALUES = frozenset(
    k.value for k in (StatusKind.FETCHING, StatusKind.TRANSCRIBING, StatusKind.ANALYZING)
)


def default_store_path() -> Path:
    return state_dir() / "videos.sqlite"


@runtime_checkable
class EntityStore(Protocol):
    """Contract the orchestrator relies on."""

    def get(self, entity_id: str) -> VideoEntity:
        ...

    def update(
        self,
        entity_id: str,
        *,
        media_locator: Any = _UNSET,
        transcript: Any = _UNSET,
        analysis: Any = _UNSET,
        variants: Any = _UNSET,
        status: Optional[PipelineStatus] = None,
    ) -> VideoEntity:
        ...

    def claim_run(self, entity_id: str, owner: str, status: PipelineStatus, lease_s: float) -> bool:
        ...

    def renew_claim(self, entity_id: str, owner: str, lease_s: float) -> bool:
        ...

    def release_run(self, entity_id: str, owner: str, status: PipelineStatus) -> bool:
        ...

    def has_live_claim(self, entity_id: str) -> bool:
        ...


class SqliteEntityStore:
    """SQLite-backed store for video entities."""

    def __init__(self, path: Optional[Path] = None) -> None:
        self.path = Path(path) if path else default_store_path()
        self._lock = threading.Lock()
        self._init_db()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.path, timeout=30.0, isolation_level=None)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    def _init_db(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS videos (
                    id TEXT PRIMARY KEY,
                    source_url TEXT NOT NULL,
                    media_locator TEXT,
                    transcript TEXT,
                    analysis_json TEXT,
                    variants_json TEXT,
                    status TEXT NOT NULL,
                    failed_stage TEXT,
                    failure_reason TEXT,
                    created_at TEXT,
                    updated_at TEXT,
                    leased_by TEXT,
                    leased_until REAL
                )
                """
            )
            columns = {row["name"] for row in conn.execute("PRAGMA table_info(videos)")}
            for name, decl in (("leased_by", "TEXT"), ("leased_until", "REAL")):
                if name not in columns:
                    conn.execute(f"ALTER TABLE videos ADD COLUMN {name} {decl}")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_videos_status ON videos(status)")

    # ------------------------------------------------------------------
    # Row mapping
    # ------------------------------------------------------------------

    @staticmethod
    def _from_row(row: sqlite3.Row) -> VideoEntity:
        status_payload: dict[str, Any] = {"state": row["status"]}
        if row["status"] == StatusKind.FAILED.value:
            status_payload["stage"] = row["failed_stage"]
            status_payload["reason"] = row["failure_reason"]
        analysis = json.loads(row["analysis_json"]) if row["analysis_json"] else None
        variants = json.loads(row["variants_json"]) if row["variants_json"] is not None else None
        return VideoEntity(
            id=row["id"],
            source_url=row["source_url"],
            media_locator=row["media_locator"],
            transcript=row["transcript"],
            analysis=Analysis.from_dict(analysis) if analysis else None,
            variants=[Variant.from_dict(v) for v in variants] if variants is not None else None,
            status=PipelineStatus.from_dict(status_payload),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    @staticmethod
    def _to_values(entity: VideoEntity) -> tuple:
        return (
            entity.source_url,
            entity.media_locator,
            entity.transcript,
            json.dumps(entity.analysis.to_dict(), ensure_ascii=False) if entity.analysis else None,
            json.dumps([v.to_dict() for v in entity.variants], ensure_ascii=False)
            if entity.variants is not None
            else None,
            entity.status.kind.value,
            entity.status.stage.value if entity.status.stage else None,
            entity.status.reason,
            entity.created_at,
            entity.updated_at,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def create(self, source_url: str, *, entity_id: Optional[str] = None) -> VideoEntity:
        """Create an Idle entity with only its source URL populated."""
        validate_source_url(source_url)
        entity = VideoEntity(id=entity_id or uuid.uuid4().hex, source_url=source_url.strip())
        with self._lock, self._connect() as conn:
            try:
                conn.execute(
                    """
                    INSERT INTO videos (
                        source_url, media_locator, transcript, analysis_json, variants_json,
                        status, failed_stage, failure_reason, created_at, updated_at, id
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    self._to_values(entity) + (entity.id,),
                )
            except sqlite3.IntegrityError as e:
                raise InvariantViolation(f"entity already exists: {entity.id}") from e
        return entity

    def get(self, entity_id: str) -> VideoEntity:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM videos WHERE id = ?", (entity_id,)).fetchone()
        if not row:
            raise EntityNotFound(entity_id)
        return self._from_row(row)

    def list_entities(
        self,
        *,
        exclude_states: Iterable[StatusKind] = (),
        limit: int = 100,
    ) -> List[VideoEntity]:
        """List entities oldest first, optionally skipping some status kinds."""
        excluded = [k.value for k in exclude_states]
        query = "SELECT * FROM videos"
        params: list[Any] = []
        if excluded:
            query += f" WHERE status NOT IN ({', '.join('?' for _ in excluded)})"
            params.extend(excluded)
        query += " ORDER BY created_at, id LIMIT ?"
        params.append(int(limit))
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._from_row(row) for row in rows]

    def update(
        self,
        entity_id: str,
        *,
        media_locator: Any = _UNSET,
        transcript: Any = _UNSET,
        analysis: Any = _UNSET,
        variants: Any = _UNSET,
        status: Optional[PipelineStatus] = None,
    ) -> VideoEntity:
        """Apply a partial update atomically and return the stored entity.

        Raises:
            EntityNotFound: unknown id
            InvariantViolation: the merged entity would be illegal; nothing is written
        """
        with self._lock, self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                row = conn.execute("SELECT * FROM videos WHERE id = ?", (entity_id,)).fetchone()
                if not row:
                    raise EntityNotFound(entity_id)
                entity = self._from_row(row)

                if media_locator is not _UNSET:
                    if entity.media_locator is not None and media_locator != entity.media_locator:
                        raise InvariantViolation(f"{entity_id}: media_locator is written at most once")
                    entity.media_locator = media_locator
                if transcript is not _UNSET:
                    if entity.transcript is not None and transcript != entity.transcript:
                        raise InvariantViolation(f"{entity_id}: transcript is immutable once set")
                    entity.transcript = transcript
                if analysis is not _UNSET:
                    entity.analysis = analysis
                if variants is not _UNSET:
                    entity.variants = list(variants) if variants is not None else None
                if status is not None:
                    entity.status = status
                entity.updated_at = _utc_iso()
                entity.validate()

                conn.execute(
                    """
                    UPDATE videos SET
                        source_url = ?, media_locator = ?, transcript = ?, analysis_json = ?,
                        variants_json = ?, status = ?, failed_stage = ?, failure_reason = ?,
                        created_at = ?, updated_at = ?
                    WHERE id = ?
                    """,
                    self._to_values(entity) + (entity_id,),
                )
                conn.execute("COMMIT")
            except BaseException:
                conn.execute("ROLLBACK")
                raise
        return entity

    # ------------------------------------------------------------------
    # Run claims
    # ------------------------------------------------------------------
    #
    # Processes sharing one database agree on who runs an entity through a
    # lease on its row: (leased_by, leased_until). A claim is honoured only
    # while the persisted status is in progress and the lease has not expired,
    # so a crashed owner's run can be taken over once its lease runs out.

    @staticmethod
    def _held_by_other(row: sqlite3.Row, owner: str, now: float) -> bool:
        if row["status"] not in _RUNNING_VALUES:
            return False
        holder = row["leased_by"]
        return holder is not None and holder != owner and (row["leased_until"] or 0.0) > now

    def claim_run(self, entity_id: str, owner: str, status: PipelineStatus, lease_s: float) -> bool:
        """Set an in-progress ``status`` and take the run lease, unless another owner holds it.

        Returns False (and writes nothing) when a live lease belongs to someone else.

        Raises:
            EntityNotFound: unknown id
        """
        with self._lock, self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                row = conn.execute("SELECT * FROM videos WHERE id = ?", (entity_id,)).fetchone()
                if not row:
                    raise EntityNotFound(entity_id)
                now = time.time()
                if self._held_by_other(row, owner, now):
                    conn.execute("ROLLBACK")
                    return False
                entity = self._from_row(row)
                entity.status = status
                entity.validate()
                conn.execute(
                    """
                    UPDATE videos SET status = ?, failed_stage = NULL, failure_reason = NULL,
                        updated_at = ?, leased_by = ?, leased_until = ?
                    WHERE id = ?
                    """,
                    (status.kind.value, _utc_iso(), owner, now + lease_s, entity_id),
                )
                conn.execute("COMMIT")
            except BaseException:
                conn.execute("ROLLBACK")
                raise
        return True

    def renew_claim(self, entity_id: str, owner: str, lease_s: float) -> bool:
        """Extend ``owner``'s lease; False if the lease now belongs to someone else."""
        with self._lock, self._connect() as conn:
            cur = conn.execute(
                "UPDATE videos SET leased_until = ? WHERE id = ? AND leased_by = ?",
                (time.time() + lease_s, entity_id, owner),
            )
            renewed = cur.rowcount == 1
        return renewed

    def release_run(self, entity_id: str, owner: str, status: PipelineStatus) -> bool:
        """Persist the run's final ``status`` and drop the lease.

        Nothing is written (and False returned) if another owner has since
        taken the run over.
        """
        with self._lock, self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                row = conn.execute("SELECT * FROM videos WHERE id = ?", (entity_id,)).fetchone()
                if not row:
                    raise EntityNotFound(entity_id)
                if row["leased_by"] not in (None, owner):
                    conn.execute("ROLLBACK")
                    return False
                entity = self._from_row(row)
                entity.status = status
                entity.updated_at = _utc_iso()
                entity.validate()
                conn.execute(
                    """
                    UPDATE videos SET status = ?, failed_stage = ?, failure_reason = ?,
                        updated_at = ?, leased_by = NULL, leased_until = NULL
                    WHERE id = ?
                    """,
                    (
                        status.kind.value,
                        status.stage.value if status.stage else None,
                        status.reason,
                        entity.updated_at,
                        entity_id,
                    ),
                )
                conn.execute("COMMIT")
            except BaseException:
                conn.execute("ROLLBACK")
                raise
        return True

    def has_live_claim(self, entity_id: str) -> bool:
        """True while some owner holds an unexpired lease on an in-progress run."""
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM videos WHERE id = ?", (entity_id,)).fetchone()
        if not row:
            raise EntityNotFound(entity_id)
        return self._held_by_other(row, "", time.time())

    def delete(self, entity_id: str) -> None:
        """Remove an entity (surrounding-application concern; the pipeline never calls this)."""
        with self._lock, self._connect() as conn:
            conn.execute("DELETE FROM videos WHERE id = ?", (entity_id,))
