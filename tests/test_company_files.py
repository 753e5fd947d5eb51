import io
import os

from companysync.config import settings
from companysync.models.models import CompanyFile
from conftest import stored_files


def upload(client, company_id, name="plan.txt", data=b"hello", description=None):
    form = {"description": description} if description else None
    return client.post(
        f"/api/companies/{company_id}/files",
        files={"file": (name, io.BytesIO(data), "text/plain")},
        data=form,
    )


def test_upload_and_list(db, company, member_client, outsider_client):
    resp = upload(member_client, company.id, description="Q1 plan")
    assert resp.status_code == 201
    body = resp.json()
    assert body["description"] == "Q1 plan"
    assert body["url"].startswith(f"/uploads/companies/{company.id}/")

    listing = member_client.get(f"/api/companies/{company.id}/files").json()
    assert [f["filename"] for f in listing] == ["plan.txt"]
    assert outsider_client.get(f"/api/companies/{company.id}/files").status_code == 403
    assert upload(outsider_client, company.id).status_code == 403


def test_same_name_uploads_get_distinct_keys(db, company, member_client):
    a = upload(member_client, company.id).json()
    b = upload(member_client, company.id).json()
    assert a["url"] != b["url"]


def test_delete_by_uploader_or_manager(db, company, member_client, owner_client, admin_member_client):
    mine = upload(member_client, company.id).json()
    theirs = upload(owner_client, company.id).json()
    base = f"/api/companies/{company.id}/files"

    assert member_client.delete(f"{base}/{theirs['id']}").status_code == 403
    assert admin_member_client.delete(f"{base}/{theirs['id']}").status_code == 200

    path = os.path.join(settings.upload_dir, mine["url"][len("/uploads/"):])
    assert os.path.exists(path)
    assert member_client.delete(f"{base}/{mine['id']}").status_code == 200
    assert not os.path.exists(path)
    db.expire_all()
    assert db.query(CompanyFile).count() == 0


def test_upload_size_limit(db, company, member_client, monkeypatch):
    monkeypatch.setattr(settings, "max_upload_bytes", 4)
    assert upload(member_client, company.id, data=b"too large").status_code == 400


def test_failed_commit_removes_stored_upload(db, company, member_client, tmp_storage, failing_commit):
    assert upload(member_client, company.id).status_code == 500
    assert stored_files(tmp_storage) == []
    db.expire_all()
    assert db.query(CompanyFile).count() == 0
