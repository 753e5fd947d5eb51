"""
Audit writer and query tests: append, filter, paginate, export.
"""
import csv
import io
from datetime import date, datetime, timedelta

import pytest

from companysync.db import engine
from companysync.models.models import AuditLog, Company, CompanyLog, User
from companysync.services import audit, store


class RecordingLog:
    def __init__(self):
        self.events = []

    def warning(self, event, **kw):
        self.events.append(("warning", event, kw))

    def info(self, event, **kw):
        self.events.append(("info", event, kw))


@pytest.fixture
def moderator(db):
    user = User(id=42, username="moderator42", email="mod42@example.com", password_hash="", role="admin")
    db.add(user)
    db.commit()
    return user


def seed_entries(db, actor_id, count, start=datetime(2024, 3, 1, 12, 0, 0)):
    for i in range(count):
        created = start + timedelta(minutes=i)
        db.add(
            AuditLog(
                user_id=actor_id,
                action="ban_user" if i % 2 == 0 else "change_role",
                details={"n": i},
                created_at=created,
                integrity_hash=audit.compute_integrity_hash(actor_id, "x", {"n": i}, created),
            )
        )
    db.commit()


def test_record_round_trip(db, moderator):
    entry = audit.record(db, 42, "ban_user", {"targetUserId": 7})
    db.commit()
    assert entry is not None

    audit.record(db, 42, "change_role", {"targetUserId": 7, "to": "support"})
    db.commit()

    rows, total = audit.query_logs(db, action="ban_user")
    assert total == 1
    assert len(rows) == 1
    row = rows[0]
    assert row["user_id"] == 42
    assert row["user"] == "moderator42"
    assert row["action"] == "ban_user"
    assert row["details"] == {"targetUserId": 7}
    assert row["created_at"]


def test_record_does_not_commit(db, moderator):
    with store.mutation(db, "create_company"):
        db.add(Company(name="Pending"))
    audit.record(db, 42, "create_company", {"name": "Pending"})
    db.rollback()
    assert db.query(AuditLog).count() == 0
    assert db.query(Company).count() == 0


def test_integrity_hash_detects_tampering(db, moderator):
    entry = audit.record(db, 42, "change_role", {"targetUserId": 3, "to": "support"})
    db.commit()
    db.refresh(entry)
    assert audit.verify_integrity(entry)

    entry.details = {"targetUserId": 3, "to": "admin"}
    assert not audit.verify_integrity(entry)


def test_pagination_newest_first(db, moderator):
    seed_entries(db, 42, 45)

    page1, total = audit.query_logs(db, page=1, page_size=20)
    assert total == 45
    assert len(page1) == 20
    assert [r["details"]["n"] for r in page1] == list(range(44, 24, -1))

    page3, total = audit.query_logs(db, page=3, page_size=20)
    assert total == 45
    assert len(page3) == 5
    assert [r["details"]["n"] for r in page3] == [4, 3, 2, 1, 0]


def test_page_beyond_end_is_empty(db, moderator):
    seed_entries(db, 42, 3)
    rows, total = audit.query_logs(db, page=5, page_size=20)
    assert rows == []
    assert total == 3


def test_page_size_is_clamped(db, moderator):
    seed_entries(db, 42, 3)
    rows, _ = audit.query_logs(db, page_size=10_000)
    assert len(rows) == 3


def test_filters_by_action_and_user_substring(db, moderator):
    seed_entries(db, 42, 10)
    db.add(User(id=43, username="someone", email="someone@example.com", password_hash=""))
    db.commit()
    seed_entries(db, 43, 4)

    _, total = audit.query_logs(db, action="BAN")
    assert total == 7  # 5 from moderator42, 2 from someone
    _, total = audit.query_logs(db, user="MODERATOR")
    assert total == 10
    _, total = audit.query_logs(db, user="some", action="role")
    assert total == 2


def test_wildcards_in_filters_match_literally(db, moderator):
    seed_entries(db, 42, 4)

    _, total = audit.query_logs(db, user="%")
    assert total == 0
    _, total = audit.query_logs(db, action="ban%user")
    assert total == 0
    # "_" is a literal underscore, not any single character
    _, total = audit.query_logs(db, action="ban_")
    assert total == 2
    _, total = audit.query_logs(db, action="banXuser")
    assert total == 0


def test_date_only_upper_bound_covers_whole_day(db, moderator):
    seed_entries(db, 42, 3, start=datetime(2024, 3, 1, 23, 58, 0))  # 23:58, 23:59, 00:00 next day
    _, total = audit.query_logs(db, date_from=date(2024, 3, 1), date_to=date(2024, 3, 1))
    assert total == 2
    _, total = audit.query_logs(db, date_from=date(2024, 3, 2))
    assert total == 1


def test_parse_bound():
    assert audit.parse_bound("2024-03-01") == date(2024, 3, 1)
    assert audit.parse_bound("2024-03-01T10:30:00Z") == datetime(2024, 3, 1, 10, 30)
    assert audit.parse_bound("") is None
    with pytest.raises(ValueError):
        audit.parse_bound("yesterday")


def test_csv_export_escapes_details(db, moderator):
    audit.record(db, 42, "update_settings", {"note": 'comma, and "quotes"'})
    db.commit()
    text = audit.logs_to_csv(audit.export_logs(db))

    assert text.startswith("ID,User,Action,Details,CreatedAt\r\n")
    rows = list(csv.reader(io.StringIO(text)))
    assert rows[0] == audit.CSV_HEADER
    assert rows[1][1] == "moderator42"
    assert rows[1][2] == "update_settings"
    assert rows[1][3] == '{"note": "comma, and \\"quotes\\""}'


def test_export_is_not_paginated(db, moderator):
    seed_entries(db, 42, 45)
    assert len(audit.export_logs(db)) == 45


def test_audit_failure_does_not_abort_mutation(db, moderator, monkeypatch):
    recorder = RecordingLog()
    monkeypatch.setattr(audit, "log", recorder)
    AuditLog.__table__.drop(engine)

    company = Company(name="Survivor")
    with store.mutation(db, "create_company"):
        db.add(company)
    assert audit.record(db, 42, "create_company", {"name": "Survivor"}) is None
    store.commit(db, "create_company")

    assert db.query(Company).filter(Company.name == "Survivor").count() == 1
    assert recorder.events[0][0] == "warning"
    assert recorder.events[0][1] == "audit.write_failed"


def test_record_company_and_list(db, moderator):
    company = Company(name="Acme")
    db.add(company)
    db.commit()
    audit.record_company(db, company.id, 42, "create_note", {"noteId": 1})
    audit.record_company(db, company.id, 42, "delete_note", {"noteId": 1})
    db.commit()

    rows = audit.list_company_logs(db, company.id)
    assert {r["action"] for r in rows} == {"create_note", "delete_note"}
    assert len(rows) == 2
    assert rows[0]["username"] == "moderator42"
    assert db.query(CompanyLog).count() == 2


def test_compute_diff():
    assert audit.compute_diff({"a": 1, "b": 2}, {"a": 1, "b": 3, "c": 4}) == {
        "b": {"before": 2, "after": 3},
        "c": {"before": None, "after": 4},
    }
