import json
import logging
import sqlite3
import threading
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from ...domain.errors import ConflictError, NotFoundError, ValidationError
from ...domain.models import (
    AdminNote,
    AuditEntry,
    AuditLedger,
    DurationUnit,
    PaymentStatus,
    Subscription,
    SubscriptionDraft,
    SubscriptionStatus,
    User,
    Variant,
)
from ...domain.ports.persistence import PersistenceGateway, SubscriptionQuery, Supersession

logger = logging.getLogger(__name__)

SORTABLE_FIELDS = ("created_at", "updated_at", "start_date", "end_date", "last_status_check")

# Stand-in for a creation time that could not be read back.
_UNKNOWN_MOMENT = datetime(1970, 1, 1, tzinfo=timezone.utc)


class SQLitePersistence(PersistenceGateway):
    """SQLite-backed implementation of the persistence gateway."""

    def __init__(self, path: Union[Path, str]) -> None:
        if isinstance(path, Path):
            path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._initialize()

    def _initialize(self) -> None:
        with self._conn:
            self._conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS subscriptions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL,
                    product_id TEXT NOT NULL,
                    variant_label TEXT NOT NULL,
                    variant_value INTEGER NOT NULL,
                    variant_unit TEXT NOT NULL,
                    variant_price TEXT NOT NULL,
                    start_date TEXT NOT NULL,
                    end_date TEXT,
                    status TEXT NOT NULL,
                    payment_status TEXT NOT NULL,
                    is_latest INTEGER NOT NULL DEFAULT 1,
                    replaced_subscription_id INTEGER,
                    historical_article_limit INTEGER NOT NULL DEFAULT 5,
                    payment_id TEXT,
                    transaction_id TEXT,
                    last_status_check TEXT,
                    version INTEGER NOT NULL DEFAULT 1,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    FOREIGN KEY(replaced_subscription_id) REFERENCES subscriptions(id)
                );

                CREATE INDEX IF NOT EXISTS idx_subscriptions_user_status_end
                    ON subscriptions(user_id, status, end_date);
                CREATE INDEX IF NOT EXISTS idx_subscriptions_user_payment
                    ON subscriptions(user_id, payment_status);
                CREATE INDEX IF NOT EXISTS idx_subscriptions_user_product_latest
                    ON subscriptions(user_id, product_id, is_latest);

                CREATE TABLE IF NOT EXISTS subscription_audit (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    subscription_id INTEGER NOT NULL,
                    field TEXT NOT NULL,
                    from_value TEXT,
                    to_value TEXT,
                    changed_at TEXT NOT NULL,
                    changed_by TEXT NOT NULL,
                    FOREIGN KEY(subscription_id) REFERENCES subscriptions(id)
                );

                CREATE INDEX IF NOT EXISTS idx_subscription_audit_subscription
                    ON subscription_audit(subscription_id, id);

                CREATE TABLE IF NOT EXISTS subscription_notes (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    subscription_id INTEGER NOT NULL,
                    note TEXT NOT NULL,
                    added_at TEXT NOT NULL,
                    added_by TEXT NOT NULL,
                    FOREIGN KEY(subscription_id) REFERENCES subscriptions(id)
                );

                CREATE TRIGGER IF NOT EXISTS subscription_audit_no_update
                    BEFORE UPDATE ON subscription_audit
                BEGIN
                    SELECT RAISE(ABORT, 'subscription audit ledger is append-only');
                END;

                CREATE TRIGGER IF NOT EXISTS subscription_audit_no_delete
                    BEFORE DELETE ON subscription_audit
                BEGIN
                    SELECT RAISE(ABORT, 'subscription audit ledger is append-only');
                END;

                CREATE TRIGGER IF NOT EXISTS subscription_notes_no_update
                    BEFORE UPDATE ON subscription_notes
                BEGIN
                    SELECT RAISE(ABORT, 'subscription notes are append-only');
                END;

                CREATE TRIGGER IF NOT EXISTS subscription_notes_no_delete
                    BEFORE DELETE ON subscription_notes
                BEGIN
                    SELECT RAISE(ABORT, 'subscription notes are append-only');
                END;

                CREATE TABLE IF NOT EXISTS users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    email TEXT NOT NULL UNIQUE,
                    password_hash TEXT NOT NULL,
                    is_active INTEGER NOT NULL DEFAULT 1,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );
                """
            )
        self._apply_migrations()

    def _apply_migrations(self) -> None:
        with self._lock:
            cur = self._conn.execute("PRAGMA table_info(subscriptions)")
            columns = {row[1] for row in cur.fetchall()}
        if "last_status_check" not in columns:
            with self._lock, self._conn:
                self._conn.execute("ALTER TABLE subscriptions ADD COLUMN last_status_check TEXT")

    def close(self) -> None:
        self._conn.close()

    # SubscriptionRepository API --------------------------------------------
    def get_subscription(self, subscription_id: int) -> Optional[Subscription]:
        with self._lock:
            return self._fetch_subscription_locked(subscription_id)

    def list_subscriptions(self, query: SubscriptionQuery) -> List[Subscription]:
        where, params = self._build_filters(query)
        if query.sort_by not in SORTABLE_FIELDS:
            raise ValidationError(f"Cannot sort by {query.sort_by!r}.")
        direction = "ASC" if query.sort_order.lower() == "asc" else "DESC"
        statement = f"SELECT * FROM subscriptions{where} ORDER BY {query.sort_by} {direction}, id {direction}"
        if query.limit is not None:
            statement += " LIMIT ? OFFSET ?"
            params.extend([query.limit, query.offset])
        with self._lock:
            cur = self._conn.execute(statement, params)
            rows = cur.fetchall()
            ledgers = self._load_ledgers_locked([row["id"] for row in rows])
        return [self._row_to_subscription(row, ledgers.get(row["id"])) for row in rows]

    def count_subscriptions(self, query: SubscriptionQuery) -> int:
        where, params = self._build_filters(query)
        with self._lock:
            cur = self._conn.execute(f"SELECT COUNT(*) FROM subscriptions{where}", params)
            return int(cur.fetchone()[0])

    def get_latest_subscriptions(self, user_id: int, product_id: str) -> List[Subscription]:
        with self._lock:
            cur = self._conn.execute(
                """
                SELECT * FROM subscriptions
                WHERE user_id = ? AND product_id = ? AND is_latest = 1
                ORDER BY created_at DESC, id DESC
                """,
                (user_id, product_id),
            )
            rows = cur.fetchall()
            ledgers = self._load_ledgers_locked([row["id"] for row in rows])
        return [self._row_to_subscription(row, ledgers.get(row["id"])) for row in rows]

    def create_subscription(
        self,
        draft: SubscriptionDraft,
        changes: Sequence[AuditEntry],
        supersede: Sequence[Supersession] = (),
    ) -> Subscription:
        now = self._now()
        with self._lock, self._conn:
            for item in supersede:
                cur = self._conn.execute(
                    """
                    UPDATE subscriptions
                    SET is_latest = 0, version = version + 1, updated_at = ?
                    WHERE id = ?
                    """,
                    (now, item.subscription_id),
                )
                if cur.rowcount == 0:
                    raise NotFoundError(f"Subscription {item.subscription_id} not found.")
                self._insert_changes_locked(item.subscription_id, [item.entry])
            cur = self._conn.execute(
                """
                INSERT INTO subscriptions (
                    user_id, product_id, variant_label, variant_value, variant_unit,
                    variant_price, start_date, end_date, status, payment_status,
                    is_latest, replaced_subscription_id, historical_article_limit,
                    payment_id, transaction_id, version, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 1, ?, ?)
                """,
                (
                    draft.user_id,
                    draft.product_id,
                    draft.variant.duration_label,
                    draft.variant.duration_value,
                    draft.variant.duration_unit.value,
                    str(draft.variant.price),
                    self._iso(draft.start_date),
                    self._iso(draft.end_date),
                    draft.status.value,
                    draft.payment_status.value,
                    int(draft.is_latest),
                    draft.replaced_subscription_id,
                    draft.historical_article_limit,
                    draft.payment_id,
                    draft.transaction_id,
                    now,
                    now,
                ),
            )
            subscription_id = cur.lastrowid
            self._insert_changes_locked(subscription_id, changes)
            subscription = self._fetch_subscription_locked(subscription_id)
        if subscription is None:
            raise RuntimeError("Failed to persist subscription.")
        return subscription

    def save_subscription(
        self,
        subscription: Subscription,
        expected_version: int,
        changes: Sequence[AuditEntry],
        notes: Sequence[AdminNote] = (),
    ) -> Subscription:
        now = self._now()
        with self._lock, self._conn:
            cur = self._conn.execute(
                """
                UPDATE subscriptions
                SET start_date = ?, end_date = ?, status = ?, payment_status = ?,
                    is_latest = ?, historical_article_limit = ?, last_status_check = ?,
                    version = version + 1, updated_at = ?
                WHERE id = ? AND version = ?
                """,
                (
                    self._iso(subscription.start_date),
                    self._iso(subscription.end_date) if subscription.end_date else None,
                    subscription.status.value,
                    subscription.payment_status.value,
                    int(subscription.is_latest),
                    subscription.historical_article_limit,
                    self._iso(subscription.last_status_check) if subscription.last_status_check else None,
                    now,
                    subscription.id,
                    expected_version,
                ),
            )
            if cur.rowcount == 0:
                exists = self._conn.execute(
                    "SELECT version FROM subscriptions WHERE id = ?", (subscription.id,)
                ).fetchone()
                if exists is None:
                    raise NotFoundError(f"Subscription {subscription.id} not found.")
                raise ConflictError(
                    f"Subscription {subscription.id} was modified concurrently "
                    f"(expected version {expected_version}, found {exists['version']})."
                )
            self._insert_changes_locked(subscription.id, changes)
            self._insert_notes_locked(subscription.id, notes)
            saved = self._fetch_subscription_locked(subscription.id)
        if saved is None:
            raise RuntimeError("Failed to persist subscription.")
        return saved

    def get_audit_ledger(self, subscription_id: int) -> AuditLedger:
        with self._lock:
            ledgers = self._load_ledgers_locked([subscription_id])
        return ledgers.get(subscription_id, AuditLedger())

    # UserRepository API ----------------------------------------------------
    def get_user_by_email(self, email: str) -> Optional[User]:
        with self._lock:
            cur = self._conn.execute("SELECT * FROM users WHERE email = ?", (email.lower(),))
            row = cur.fetchone()
        return self._row_to_user(row) if row else None

    def get_user_by_id(self, user_id: int) -> Optional[User]:
        with self._lock:
            cur = self._conn.execute("SELECT * FROM users WHERE id = ?", (user_id,))
            row = cur.fetchone()
        return self._row_to_user(row) if row else None

    def create_user(self, email: str, password_hash: str) -> User:
        normalized = email.lower()
        now = self._now()
        with self._lock, self._conn:
            cur = self._conn.execute(
                """
                INSERT INTO users (email, password_hash, is_active, created_at, updated_at)
                VALUES (?, ?, 1, ?, ?)
                """,
                (normalized, password_hash, now, now),
            )
            user_id = cur.lastrowid
            cur = self._conn.execute("SELECT * FROM users WHERE id = ?", (user_id,))
            row = cur.fetchone()
        if not row:
            raise RuntimeError("Failed to persist user.")
        return self._row_to_user(row)

    # Helpers ----------------------------------------------------------------
    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).isoformat()

    @staticmethod
    def _iso(value: datetime) -> str:
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).isoformat()

    @staticmethod
    def _parse_datetime(value: str) -> datetime:
        try:
            result = datetime.fromisoformat(value)
        except ValueError:
            # Fallback for legacy formats without 'T'
            result = datetime.strptime(value, "%Y-%m-%d %H:%M:%S")
        if result.tzinfo is None:
            return result.replace(tzinfo=timezone.utc)
        return result.astimezone(timezone.utc)

    def _parse_optional_datetime(self, value: Optional[str], *, column: str, row_id: int) -> Optional[datetime]:
        if not value:
            return None
        try:
            return self._parse_datetime(value)
        except (TypeError, ValueError):
            logger.warning("Subscription %s has malformed %s %r; treating it as missing.", row_id, column, value)
            return None

    @staticmethod
    def _build_filters(query: SubscriptionQuery) -> Tuple[str, List[Any]]:
        clauses: List[str] = []
        params: List[Any] = []
        if query.user_id is not None:
            clauses.append("user_id = ?")
            params.append(query.user_id)
        if query.status is not None:
            clauses.append("status = ?")
            params.append(query.status.value)
        if query.payment_status is not None:
            clauses.append("payment_status = ?")
            params.append(query.payment_status.value)
        if query.product_id:
            clauses.append("product_id = ?")
            params.append(query.product_id)
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        return where, params

    def _fetch_subscription_locked(self, subscription_id: int) -> Optional[Subscription]:
        cur = self._conn.execute("SELECT * FROM subscriptions WHERE id = ?", (subscription_id,))
        row = cur.fetchone()
        if not row:
            return None
        ledgers = self._load_ledgers_locked([subscription_id])
        return self._row_to_subscription(row, ledgers.get(subscription_id))

    def _insert_changes_locked(self, subscription_id: int, changes: Iterable[AuditEntry]) -> None:
        self._conn.executemany(
            """
            INSERT INTO subscription_audit (
                subscription_id, field, from_value, to_value, changed_at, changed_by
            )
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            [
                (
                    subscription_id,
                    entry.field,
                    json.dumps(entry.from_value, default=str),
                    json.dumps(entry.to_value, default=str),
                    self._iso(entry.changed_at),
                    entry.changed_by,
                )
                for entry in changes
            ],
        )

    def _insert_notes_locked(self, subscription_id: int, notes: Iterable[AdminNote]) -> None:
        self._conn.executemany(
            "INSERT INTO subscription_notes (subscription_id, note, added_at, added_by) VALUES (?, ?, ?, ?)",
            [(subscription_id, note.note, self._iso(note.added_at), note.added_by) for note in notes],
        )

    def _load_ledgers_locked(self, subscription_ids: Sequence[int]) -> Dict[int, AuditLedger]:
        if not subscription_ids:
            return {}
        placeholders = ", ".join("?" for _ in subscription_ids)
        changes: Dict[int, List[AuditEntry]] = {}
        notes: Dict[int, List[AdminNote]] = {}
        cur = self._conn.execute(
            f"SELECT * FROM subscription_audit WHERE subscription_id IN ({placeholders}) ORDER BY id ASC",
            list(subscription_ids),
        )
        for row in cur.fetchall():
            changes.setdefault(row["subscription_id"], []).append(
                AuditEntry(
                    field=row["field"],
                    from_value=json.loads(row["from_value"]) if row["from_value"] is not None else None,
                    to_value=json.loads(row["to_value"]) if row["to_value"] is not None else None,
                    changed_at=self._parse_datetime(row["changed_at"]),
                    changed_by=row["changed_by"],
                )
            )
        cur = self._conn.execute(
            f"SELECT * FROM subscription_notes WHERE subscription_id IN ({placeholders}) ORDER BY id ASC",
            list(subscription_ids),
        )
        for row in cur.fetchall():
            notes.setdefault(row["subscription_id"], []).append(
                AdminNote(
                    note=row["note"],
                    added_at=self._parse_datetime(row["added_at"]),
                    added_by=row["added_by"],
                )
            )
        return {
            subscription_id: AuditLedger(
                changes=tuple(changes.get(subscription_id, ())),
                notes=tuple(notes.get(subscription_id, ())),
            )
            for subscription_id in subscription_ids
        }

    def _row_to_subscription(self, row: sqlite3.Row, ledger: Optional[AuditLedger]) -> Subscription:
        row_id = row["id"]
        try:
            status = SubscriptionStatus(row["status"])
        except ValueError:
            logger.warning("Subscription %s has unknown status %r; reading it as expired.", row_id, row["status"])
            status = SubscriptionStatus.EXPIRED
        try:
            payment_status = PaymentStatus(row["payment_status"])
        except ValueError:
            logger.warning(
                "Subscription %s has unknown payment status %r; reading it as pending.",
                row_id,
                row["payment_status"],
            )
            payment_status = PaymentStatus.PENDING
        try:
            unit = DurationUnit(row["variant_unit"])
        except ValueError:
            logger.warning("Subscription %s has unknown duration unit %r.", row_id, row["variant_unit"])
            unit = DurationUnit.DAYS
        try:
            price = Decimal(row["variant_price"])
        except (InvalidOperation, TypeError):
            logger.warning("Subscription %s has malformed price %r.", row_id, row["variant_price"])
            price = Decimal("0")
        created_at = self._parse_optional_datetime(row["created_at"], column="created_at", row_id=row_id)
        if created_at is None:
            created_at = _UNKNOWN_MOMENT
        updated_at = self._parse_optional_datetime(row["updated_at"], column="updated_at", row_id=row_id)
        start_date = self._parse_optional_datetime(row["start_date"], column="start_date", row_id=row_id)
        return Subscription(
            id=row_id,
            user_id=row["user_id"],
            product_id=row["product_id"],
            variant=Variant(
                duration_label=row["variant_label"],
                duration_value=row["variant_value"],
                duration_unit=unit,
                price=price,
            ),
            start_date=start_date or created_at,
            end_date=self._parse_optional_datetime(row["end_date"], column="end_date", row_id=row_id),
            status=status,
            payment_status=payment_status,
            is_latest=bool(row["is_latest"]),
            historical_article_limit=row["historical_article_limit"],
            created_at=created_at,
            updated_at=updated_at or created_at,
            version=row["version"],
            replaced_subscription_id=row["replaced_subscription_id"],
            payment_id=row["payment_id"],
            transaction_id=row["transaction_id"],
            last_status_check=self._parse_optional_datetime(
                row["last_status_check"], column="last_status_check", row_id=row_id
            ),
            metadata=ledger or AuditLedger(),
        )

    def _row_to_user(self, row: sqlite3.Row) -> User:
        return User(
            id=row["id"],
            email=row["email"],
            password_hash=row["password_hash"],
            is_active=bool(row["is_active"]),
            created_at=self._parse_datetime(row["created_at"]),
            updated_at=self._parse_datetime(row["updated_at"]),
        )
