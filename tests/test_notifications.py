"""
Test suite for the notification rule engine

Tests the four borrower reminders, cooldown-based deduplication and per-item
failure isolation, plus the notification store.
"""

import pytest
from datetime import date, datetime, timedelta, timezone

from private_lending.calculator import local_now
from private_lending.exceptions import PersistenceFailure
from private_lending.loans import LoanStatus, Party
from private_lending.notifications import (
    Notification, NotificationRuleEngine, NotificationStore, NotificationType, default_rules
)
from private_lending.storage import InMemoryStorage


BORROWER_EMAIL = "borrower@example.com"
DUE = date(2026, 3, 17)


def at(day: date) -> datetime:
    return datetime(day.year, day.month, day.day, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def store():
    return NotificationStore(InMemoryStorage())


@pytest.fixture
def engine(store):
    return NotificationRuleEngine(store)


def issued(loan_id: str, title: str, when: datetime) -> Notification:
    return Notification(id=f"n-{title}-{when.isoformat()}", user_id=BORROWER_EMAIL, loan_id=loan_id,
                        type=NotificationType.INFO, title=title, message="", date=when)


class TestReminderRules:

    def test_upcoming_reminder(self, engine, make_loan):
        loan = make_loan(repayment_date=DUE)

        created = engine.evaluate([loan], BORROWER_EMAIL, at(date(2026, 3, 10)), [])

        assert len(created) == 1
        assert created[0].title == "Rappel J-7"
        assert created[0].type == NotificationType.INFO
        assert created[0].user_id == BORROWER_EMAIL
        assert created[0].loan_id == loan.id
        assert "1000 EUR" in created[0].message
        assert created[0].read is False

    def test_final_warning(self, engine, make_loan):
        created = engine.evaluate([make_loan(rate="12")], BORROWER_EMAIL, at(date(2026, 3, 16)), [])

        assert [n.title for n in created] == ["Dernier jour"]
        assert created[0].type == NotificationType.WARNING
        assert "12%" in created[0].message

    def test_penalty_activated(self, engine, make_loan):
        created = engine.evaluate([make_loan(amount="1000", rate="12")], BORROWER_EMAIL,
                                  at(date(2026, 3, 18)), [])

        assert [n.title for n in created] == ["Retard activé"]
        assert created[0].type == NotificationType.DANGER
        assert "0.33 EUR" in created[0].message

    def test_weekly_digest(self, engine, make_loan):
        created = engine.evaluate([make_loan(amount="1000", rate="12")], BORROWER_EMAIL,
                                  at(date(2026, 3, 24)), [])

        assert [n.title for n in created] == ["Point sur votre prêt"]
        assert "(7 jours)" in created[0].message
        assert "1002.30 EUR à Christian Kamdem" in created[0].message

    @pytest.mark.parametrize("days_late,fires", [(2, False), (7, True), (8, False), (14, True), (21, True)])
    def test_digest_cadence(self, engine, make_loan, days_late, fires):
        now = at(DUE + timedelta(days=days_late))

        created = engine.evaluate([make_loan()], BORROWER_EMAIL, now, [])

        assert bool(created) == fires

    @pytest.mark.parametrize("offset", [-10, -6, -2, 0])
    def test_quiet_days(self, engine, make_loan, offset):
        assert engine.evaluate([make_loan()], BORROWER_EMAIL, at(DUE + timedelta(days=offset)), []) == []

    def test_custom_reminder_window(self, store, make_loan):
        engine = NotificationRuleEngine(store, rules=default_rules(reminder_days=3))

        created = engine.evaluate([make_loan()], BORROWER_EMAIL, at(date(2026, 3, 14)), [])

        assert [n.title for n in created] == ["Rappel J-3"]


class TestDeduplication:

    def test_recent_notification_suppresses(self, engine, make_loan):
        loan = make_loan()
        now = at(date(2026, 3, 10))

        created = engine.evaluate([loan], BORROWER_EMAIL, now,
                                  [issued(loan.id, "Rappel J-7", now - timedelta(days=1))])

        assert created == []

    def test_old_notification_does_not_suppress(self, engine, make_loan):
        loan = make_loan()
        now = at(date(2026, 3, 10))

        created = engine.evaluate([loan], BORROWER_EMAIL, now,
                                  [issued(loan.id, "Rappel J-7", now - timedelta(days=4))])

        assert len(created) == 1

    def test_other_loan_does_not_suppress(self, engine, make_loan):
        loan = make_loan()
        now = at(date(2026, 3, 10))

        created = engine.evaluate([loan], BORROWER_EMAIL, now,
                                  [issued("another-loan", "Rappel J-7", now)])

        assert len(created) == 1

    def test_key_is_matched_inside_title(self, engine, make_loan):
        loan = make_loan()
        now = at(date(2026, 3, 18))

        created = engine.evaluate([loan], BORROWER_EMAIL, now,
                                  [issued(loan.id, "⚠️ Retard activé !", now - timedelta(hours=2))])

        assert created == []

    def test_naive_history_dates(self, engine, make_loan):
        """Stored dates without a timezone are compared as local time"""
        loan = make_loan()
        now = at(date(2026, 3, 10))
        naive = (now - timedelta(days=1)).astimezone().replace(tzinfo=None)

        assert engine.evaluate([loan], BORROWER_EMAIL, now, [issued(loan.id, "Rappel J-7", naive)]) == []

    def test_same_day_rerun_is_idempotent(self, engine, store, make_loan):
        loan = make_loan()
        now = at(date(2026, 3, 18))

        first = engine.run_for_user([loan], BORROWER_EMAIL, now)
        second = engine.run_for_user([loan], BORROWER_EMAIL, now + timedelta(hours=5))

        assert len(first) == 1
        assert second == []
        assert len(store.list_for_user(BORROWER_EMAIL)) == 1

    def test_same_day_digest_rerun(self, engine, store, make_loan):
        loan = make_loan()
        now = at(DUE + timedelta(days=7))

        first = engine.run_for_user([loan], BORROWER_EMAIL, now)
        second = engine.run_for_user([loan], BORROWER_EMAIL, now + timedelta(hours=8))

        assert [n.title for n in first] == ["Point sur votre prêt"]
        assert second == []
        assert len(store.list_for_user(BORROWER_EMAIL)) == 1

    def test_default_clock_uses_local_day(self, engine, make_loan, local_timezone):
        local_timezone("Pacific/Kiritimati")
        loan = make_loan(repayment_date=local_now().date() + timedelta(days=7))

        created = engine.run_for_user([loan], BORROWER_EMAIL)

        assert [n.title for n in created] == ["Rappel J-7"]


class TestEligibility:

    def test_lender_gets_no_reminders(self, engine, make_loan):
        assert engine.evaluate([make_loan()], "lender@example.com", at(date(2026, 3, 10)), []) == []

    @pytest.mark.parametrize("status", [LoanStatus.PENDING_BORROWER, LoanStatus.REPAYMENT_PENDING,
                                        LoanStatus.PAID])
    def test_only_active_loans(self, engine, make_loan, status):
        assert engine.evaluate([make_loan(status=status)], BORROWER_EMAIL,
                               at(date(2026, 3, 18)), []) == []

    def test_user_email_is_normalized(self, engine, make_loan):
        created = engine.evaluate([make_loan()], " Borrower@Example.com ", at(date(2026, 3, 10)), [])

        assert len(created) == 1

    def test_each_loan_evaluated(self, engine, make_loan):
        other_borrower = Party(name="Paul Martin", email="paul@example.com")
        loans = [
            make_loan(repayment_date=date(2026, 3, 17)),
            make_loan(repayment_date=date(2026, 3, 9)),
            make_loan(repayment_date=date(2026, 3, 17), borrower=other_borrower),
        ]

        created = engine.evaluate(loans, BORROWER_EMAIL, at(date(2026, 3, 10)), [])

        assert sorted(n.title for n in created) == ["Rappel J-7", "Retard activé"]


class TestFailureIsolation:

    def test_failed_write_does_not_stop_the_pass(self, make_loan):
        class FlakyStore(NotificationStore):
            calls = 0

            def append(self, notification):
                FlakyStore.calls += 1
                if FlakyStore.calls == 1:
                    raise PersistenceFailure("disk full")
                super().append(notification)

        store = FlakyStore(InMemoryStorage())
        engine = NotificationRuleEngine(store)
        loans = [make_loan(repayment_date=date(2026, 3, 17)), make_loan(repayment_date=date(2026, 3, 9))]

        created = engine.evaluate(loans, BORROWER_EMAIL, at(date(2026, 3, 10)), [])

        assert len(created) == 1
        assert created[0].loan_id == loans[1].id
        assert [n.id for n in store.list_for_user(BORROWER_EMAIL)] == [created[0].id]

    def test_unreadable_history_fires_nothing(self, make_loan):
        class BrokenStorage(InMemoryStorage):
            def find(self, table, filters):
                raise OSError("database is locked")

        engine = NotificationRuleEngine(NotificationStore(BrokenStorage()))

        assert engine.run_for_user([make_loan()], BORROWER_EMAIL, at(date(2026, 3, 10))) == []

    def test_store_wraps_storage_errors(self):
        class BrokenStorage(InMemoryStorage):
            def save(self, table, record_id, data):
                raise OSError("read-only")

        store = NotificationStore(BrokenStorage())

        with pytest.raises(PersistenceFailure):
            store.append(issued("L1", "Rappel J-7", at(DUE)))


class TestNotificationStore:

    def test_list_newest_first(self, store):
        older = issued("L1", "Rappel J-7", at(date(2026, 3, 10)))
        newer = issued("L1", "Dernier jour", at(date(2026, 3, 16)))
        store.append(older)
        store.append(newer)

        assert [n.id for n in store.list_for_user(BORROWER_EMAIL)] == [newer.id, older.id]
        assert store.list_for_user("someone@example.com") == []

    def test_mark_read(self, store):
        notification = issued("L1", "Rappel J-7", at(DUE))
        store.append(notification)
        assert store.unread_count(BORROWER_EMAIL) == 1

        updated = store.mark_read(notification.id, BORROWER_EMAIL)

        assert updated.read is True
        assert store.get(notification.id).read is True
        assert store.unread_count(BORROWER_EMAIL) == 0

    def test_mark_read_other_user(self, store):
        notification = issued("L1", "Rappel J-7", at(DUE))
        store.append(notification)

        assert store.mark_read(notification.id, "someone@example.com") is None
        assert store.mark_read("missing", BORROWER_EMAIL) is None
        assert store.get(notification.id).read is False

    def test_roundtrip(self, store):
        notification = issued("L1", "Retard activé", at(DUE))
        store.append(notification)

        assert store.get(notification.id) == notification
