import sqlite3
from datetime import datetime, timezone

import pytest

from app.application.services.reconciliation_service import ReconciliationService
from app.application.services.statistics_service import StatisticsService
from app.application.services.subscription_update_service import SubscriptionPatch
from app.domain.errors import ValidationError
from app.domain.models import PaymentStatus, SubscriptionStatus
from app.domain.ports.persistence import SubscriptionQuery
from app.domain.status import compute_status
from tests.conftest import MONTHLY, NOW


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


class TestSQLitePersistence:
    def test_audit_rows_cannot_be_rewritten(self, gateway, assignment):
        created = assignment.create_subscription(42, "prod-1", MONTHLY, utc(2025, 1, 1))

        with pytest.raises(sqlite3.DatabaseError):
            with gateway._conn:
                gateway._conn.execute("UPDATE subscription_audit SET changed_by = 'x' WHERE subscription_id = ?", (created.id,))
        with pytest.raises(sqlite3.DatabaseError):
            with gateway._conn:
                gateway._conn.execute("DELETE FROM subscription_audit WHERE subscription_id = ?", (created.id,))

        assert gateway.get_audit_ledger(created.id).changes[0].changed_by == "system"

    def test_notes_cannot_be_deleted(self, gateway, assignment, updates):
        created = assignment.create_subscription(42, "prod-1", MONTHLY, utc(2025, 1, 1))
        updates.update(created.id, SubscriptionPatch(notes="keep me"), "ops@example.com")

        with pytest.raises(sqlite3.DatabaseError):
            with gateway._conn:
                gateway._conn.execute("DELETE FROM subscription_notes WHERE subscription_id = ?", (created.id,))

        assert [note.note for note in gateway.get_audit_ledger(created.id).notes] == ["keep me"]

    def test_notes_are_kept_in_order(self, gateway, assignment, updates):
        created = assignment.create_subscription(42, "prod-1", MONTHLY, utc(2025, 1, 1))
        updates.update(created.id, SubscriptionPatch(notes="first"), "a@example.com")
        updates.update(created.id, SubscriptionPatch(notes="second"), "b@example.com")

        ledger = gateway.get_audit_ledger(created.id)

        assert [(note.note, note.added_by) for note in ledger.notes] == [
            ("first", "a@example.com"),
            ("second", "b@example.com"),
        ]

    def test_filters_sorting_and_paging(self, gateway, assignment):
        for day in (1, 2, 3):
            assignment.create_subscription(42, f"prod-{day}", MONTHLY, utc(2025, 1, day))
        assignment.create_subscription(42, "prod-9", MONTHLY, NOW, payment_status=PaymentStatus.FAILED)

        page = gateway.list_subscriptions(
            SubscriptionQuery(
                user_id=42,
                payment_status=PaymentStatus.COMPLETED,
                sort_by="start_date",
                sort_order="asc",
                limit=2,
                offset=1,
            )
        )

        assert [item.product_id for item in page] == ["prod-2", "prod-3"]
        assert gateway.count_subscriptions(SubscriptionQuery(user_id=42, payment_status=PaymentStatus.COMPLETED)) == 3
        assert gateway.count_subscriptions(SubscriptionQuery(user_id=42, product_id="prod-9")) == 1

    def test_rejects_unknown_sort_field(self, gateway):
        with pytest.raises(ValidationError):
            gateway.list_subscriptions(SubscriptionQuery(user_id=42, sort_by="price; DROP TABLE users"))

    def test_malformed_end_date_reads_as_expired(self, gateway, assignment):
        created = assignment.create_subscription(42, "prod-1", MONTHLY, utc(2025, 1, 1))
        with gateway._conn:
            gateway._conn.execute("UPDATE subscriptions SET end_date = 'someday' WHERE id = ?", (created.id,))

        stored = gateway.get_subscription(created.id)

        assert stored.end_date is None
        assert compute_status(stored, NOW).real_time_status == SubscriptionStatus.EXPIRED

    def test_admin_users(self, gateway):
        user = gateway.create_user("ops@example.com", "hash")

        assert gateway.get_user_by_email("ops@example.com").id == user.id
        assert gateway.get_user_by_id(user.id).email == "ops@example.com"
        assert gateway.get_user_by_email("nobody@example.com") is None


class TestMalformedTimestamps:
    def test_bad_start_date_falls_back_to_creation_time(self, gateway, assignment):
        created = assignment.create_subscription(42, "prod-1", MONTHLY, utc(2025, 1, 1))
        with gateway._conn:
            gateway._conn.execute("UPDATE subscriptions SET start_date = 'garbage' WHERE id = ?", (created.id,))

        stored = gateway.get_subscription(created.id)

        assert stored.start_date == stored.created_at
        assert stored.end_date == utc(2025, 2, 1)

    def test_bad_timestamps_do_not_stop_stats_or_sweep(self, gateway, assignment):
        broken = assignment.create_subscription(42, "prod-1", MONTHLY, utc(2024, 1, 1))
        healthy = assignment.create_subscription(42, "prod-2", MONTHLY, utc(2024, 1, 1))
        with gateway._conn:
            gateway._conn.execute(
                "UPDATE subscriptions SET start_date = 'garbage', created_at = 'x', updated_at = '' WHERE id = ?",
                (broken.id,),
            )

        stats = StatisticsService(gateway).compute_stats(42, NOW)
        report = ReconciliationService(gateway).reconcile(NOW)

        assert stats.total == 2
        assert stats.expired == 2
        assert (report.processed, report.updated) == (2, 2)
        assert gateway.get_subscription(healthy.id).status == SubscriptionStatus.EXPIRED
        assert gateway.get_subscription(broken.id).status == SubscriptionStatus.EXPIRED
