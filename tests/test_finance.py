import io

from companysync.models.models import CompanyLog, FinanceFile, FinanceRecord
from conftest import stored_files

RECORD = {"type": "expense", "category": "Travel", "amount": 120.5, "currency": "usd", "description": "Taxi"}


def create_record(client, company_id, **overrides):
    resp = client.post(f"/api/companies/{company_id}/finance", json={**RECORD, **overrides})
    assert resp.status_code == 201, resp.text
    return resp.json()


def test_author_loses_edit_rights_after_approval(db, company, member_client, owner_client):
    base = f"/api/companies/{company.id}/finance"
    rec = create_record(member_client, company.id)
    assert rec["status"] == "pending"
    assert rec["currency"] == "USD"

    resp = member_client.put(f"{base}/{rec['id']}", json={"amount": 99})
    assert resp.status_code == 200
    assert resp.json()["amount"] == 99.0

    resp = owner_client.patch(f"{base}/{rec['id']}/status", json={"status": "approved"})
    assert resp.status_code == 200
    assert resp.json()["status"] == "approved"

    resp = member_client.put(f"{base}/{rec['id']}", json={"amount": 1})
    assert resp.status_code == 403
    assert member_client.delete(f"{base}/{rec['id']}").status_code == 403

    resp = owner_client.put(f"{base}/{rec['id']}", json={"amount": 150})
    assert resp.status_code == 200
    assert resp.json()["amount"] == 150.0

    actions = [
        a for (a,) in db.query(CompanyLog.action).filter(CompanyLog.company_id == company.id).order_by(CompanyLog.id)
    ]
    assert actions == [
        "create_finance_record",
        "update_finance_record",
        "set_finance_status",
        "update_finance_record",
    ]


def test_other_member_cannot_edit_pending_record(db, company, owner_client, member_client):
    rec = create_record(owner_client, company.id)
    resp = member_client.put(f"/api/companies/{company.id}/finance/{rec['id']}", json={"amount": 5})
    assert resp.status_code == 403


def test_admin_member_can_delete_any_record(db, company, member_client, admin_member_client):
    rec = create_record(member_client, company.id)
    assert admin_member_client.delete(f"/api/companies/{company.id}/finance/{rec['id']}").status_code == 200
    db.expire_all()
    assert db.get(FinanceRecord, rec["id"]) is None


def test_member_cannot_set_status(db, company, member_client):
    rec = create_record(member_client, company.id)
    base = f"/api/companies/{company.id}/finance/{rec['id']}"
    assert member_client.patch(f"{base}/status", json={"status": "approved"}).status_code == 403
    assert member_client.put(base, json={"status": "approved"}).status_code == 403
    resp = member_client.post(f"/api/companies/{company.id}/finance", json={**RECORD, "status": "approved"})
    assert resp.status_code == 403


def test_missing_record_and_outsider_fail_closed(db, company, owner_client, outsider_client):
    rec = create_record(owner_client, company.id)
    base = f"/api/companies/{company.id}/finance"
    assert owner_client.put(f"{base}/9999", json={"amount": 1}).status_code == 403
    assert outsider_client.put(f"{base}/{rec['id']}", json={"amount": 1}).status_code == 403
    assert outsider_client.get(base).status_code == 403


def test_record_from_another_company_not_reachable(db, company, owner_client):
    rec = create_record(owner_client, company.id)
    other = owner_client.post("/api/companies", json={"name": "Other Co"}).json()
    resp = owner_client.put(f"/api/companies/{other['id']}/finance/{rec['id']}", json={"amount": 1})
    assert resp.status_code == 403


def test_required_fields(db, company, member_client):
    resp = member_client.post(f"/api/companies/{company.id}/finance", json={"type": "income", "amount": 10})
    assert resp.status_code == 422
    resp = member_client.post(f"/api/companies/{company.id}/finance", json={**RECORD, "amount": -5})
    assert resp.status_code == 422


def test_list_filters(db, company, owner_client):
    create_record(owner_client, company.id)
    create_record(owner_client, company.id, type="income", category="Sales")
    base = f"/api/companies/{company.id}/finance"
    assert [r["category"] for r in owner_client.get(base, params={"type": "income"}).json()] == ["Sales"]
    assert len(owner_client.get(base, params={"status": "pending"}).json()) == 2
    assert len(owner_client.get(base, params={"from": "2000-01-01"}).json()) == 2
    assert owner_client.get(base, params={"to": "2000-01-01"}).json() == []
    assert owner_client.get(base, params={"from": "garbage"}).status_code == 400


def test_finance_files(db, company, member_client, admin_member_client):
    rec = create_record(member_client, company.id)
    base = f"/api/companies/{company.id}/finance/{rec['id']}/files"

    resp = member_client.post(base, files={"file": ("receipt.pdf", io.BytesIO(b"%PDF-1.4 test"), "application/pdf")})
    assert resp.status_code == 201
    uploaded = resp.json()
    assert uploaded["filename"] == "receipt.pdf"
    assert uploaded["size"] == 13
    assert uploaded["url"].startswith("/uploads/finance/")
    assert uploaded["url"].endswith(".pdf")

    listing = member_client.get(base).json()
    assert [f["id"] for f in listing] == [uploaded["id"]]
    detail = member_client.get(f"{base}/{uploaded['id']}").json()
    assert detail["download_url"] == uploaded["url"]

    served = member_client.get(uploaded["url"])
    assert served.status_code == 200
    assert served.content == b"%PDF-1.4 test"

    assert member_client.delete(f"{base}/{uploaded['id']}").status_code == 403
    assert admin_member_client.delete(f"{base}/{uploaded['id']}").status_code == 200
    db.expire_all()
    assert db.query(FinanceFile).count() == 0
    assert member_client.get(f"{base}/{uploaded['id']}").status_code == 404


def test_failed_commit_removes_stored_attachment(db, company, member, member_client, tmp_storage, failing_commit):
    rec = FinanceRecord(
        company_id=company.id, author_id=member.id, type="expense",
        category="Travel", amount=10, currency="USD",
    )
    db.add(rec)
    db.commit()

    resp = member_client.post(
        f"/api/companies/{company.id}/finance/{rec.id}/files",
        files={"file": ("receipt.pdf", io.BytesIO(b"%PDF-1.4"), "application/pdf")},
    )
    assert resp.status_code == 500
    assert stored_files(tmp_storage) == []
    assert db.query(FinanceFile).count() == 0
