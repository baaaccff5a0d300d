"""
Tests for storage backends
"""

import pytest
from decimal import Decimal
from datetime import date, datetime, timezone

from private_lending.storage import (
    InMemoryStorage, SQLiteStorage, StorageInterface, create_storage, to_storable
)


record = {
    "id": "loan_001",
    "lender_email": "lender@example.com",
    "borrower_email": "borrower@example.com",
    "amount": "100.50",
    "status": "active"
}


@pytest.fixture(params=["memory", "sqlite"])
def backend(request, tmp_path):
    """Each test runs against both backends"""
    if request.param == "memory":
        storage = InMemoryStorage()
    else:
        storage = SQLiteStorage(tmp_path / "lending.db")
    yield storage
    storage.close()


class TestStorageBackends:
    """Behaviour shared by every StorageInterface implementation"""

    def test_save_and_load(self, backend):
        backend.save("loans", "loan_001", record)

        assert backend.load("loans", "loan_001") == record
        assert backend.exists("loans", "loan_001")
        assert backend.load("loans", "missing") is None
        assert not backend.exists("loans", "missing")

    def test_save_replaces(self, backend):
        backend.save("loans", "loan_001", record)
        backend.save("loans", "loan_001", {**record, "status": "paid"})

        assert backend.load("loans", "loan_001")["status"] == "paid"
        assert backend.count("loans") == 1

    def test_loaded_records_are_copies(self, backend):
        backend.save("loans", "loan_001", record)

        loaded = backend.load("loans", "loan_001")
        loaded["status"] = "tampered"

        assert backend.load("loans", "loan_001")["status"] == "active"

    def test_find_matches_all_filters(self, backend):
        backend.save("loans", "a", {**record, "id": "a"})
        backend.save("loans", "b", {**record, "id": "b", "status": "paid"})

        found = backend.find("loans", {"lender_email": "lender@example.com", "status": "paid"})

        assert [r["id"] for r in found] == ["b"]
        assert backend.find("loans", {"unknown_field": "x"}) == []

    def test_find_any_deduplicates(self, backend):
        backend.save("loans", "a", {**record, "id": "a"})
        backend.save("loans", "b", {**record, "id": "b", "lender_email": "other@example.com"})
        backend.save("loans", "c", {**record, "id": "c", "lender_email": "x@example.com",
                                    "borrower_email": "y@example.com"})

        found = backend.find_any("loans", {
            "lender_email": "lender@example.com",
            "borrower_email": "borrower@example.com"
        })

        assert sorted(r["id"] for r in found) == ["a", "b"]

    def test_empty_table(self, backend):
        assert backend.load_all("notifications") == []
        assert backend.count("notifications") == 0

    def test_tables_are_isolated(self, backend):
        backend.save("loans", "x", record)

        assert backend.load("notifications", "x") is None


class TestSQLitePersistence:

    def test_data_survives_reopen(self, tmp_path):
        path = tmp_path / "lending.db"
        storage = SQLiteStorage(path)
        storage.save("loans", "loan_001", record)
        storage.close()

        reopened = SQLiteStorage(path)
        assert reopened.load("loans", "loan_001") == record
        reopened.close()


class TestHelpers:

    def test_to_storable(self):
        converted = to_storable({
            "amount": Decimal("12.50"),
            "due": date(2026, 3, 17),
            "at": datetime(2026, 3, 17, 8, 0, tzinfo=timezone.utc),
            "items": [Decimal("1")]
        })

        assert converted == {
            "amount": "12.50",
            "due": "2026-03-17",
            "at": "2026-03-17T08:00:00+00:00",
            "items": ["1"]
        }

    def test_create_storage(self, tmp_path):
        assert isinstance(create_storage("memory://"), InMemoryStorage)

        sqlite_storage = create_storage(f"sqlite:///{tmp_path / 'x.db'}")
        assert isinstance(sqlite_storage, SQLiteStorage)
        assert isinstance(sqlite_storage, StorageInterface)
        sqlite_storage.close()

        in_memory_sqlite = create_storage("sqlite://")
        assert in_memory_sqlite.db_path == ":memory:"
        in_memory_sqlite.close()

    def test_unsupported_url(self):
        with pytest.raises(ValueError):
            create_storage("postgresql://localhost/lending")
