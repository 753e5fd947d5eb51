import csv
import io

from companysync.models.models import AuditLog, Company, Setting, User
from conftest import make_user


def test_admin_routes_require_admin_role(db, member_client, anon_client):
    assert anon_client.get("/api/admin/users").status_code == 401
    assert member_client.get("/api/admin/users").status_code == 403
    assert member_client.get("/api/admin/logs").status_code == 403


def test_list_users_with_search(db, site_admin_client):
    make_user(db, "alice")
    make_user(db, "bob")
    resp = site_admin_client.get("/api/admin/users", params={"search": "ali"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["total"] == 1
    assert body["users"][0]["username"] == "alice"


def test_user_search_treats_wildcards_literally(db, site_admin_client):
    make_user(db, "alice")
    resp = site_admin_client.get("/api/admin/users", params={"search": "%"})
    assert resp.json()["total"] == 0


def test_ban_and_unban_are_audited(db, site_admin, site_admin_client):
    target = make_user(db, "troll")
    resp = site_admin_client.patch("/api/admin/users/ban", json={"id": target.id, "active": False})
    assert resp.status_code == 200
    db.expire_all()
    assert db.get(User, target.id).is_active is False

    site_admin_client.patch("/api/admin/users/ban", json={"id": target.id, "active": True})
    entries = db.query(AuditLog).order_by(AuditLog.id).all()
    assert [e.action for e in entries] == ["ban_user", "unban_user"]
    assert entries[0].user_id == site_admin.id
    assert entries[0].details == {"targetUserId": target.id}


def test_change_role(db, site_admin_client):
    target = make_user(db, "helper")
    resp = site_admin_client.patch("/api/admin/users/role", json={"id": target.id, "role": "support"})
    assert resp.status_code == 200
    assert resp.json()["role"] == "support"
    assert site_admin_client.patch("/api/admin/users/role", json={"id": target.id, "role": "god"}).status_code == 422


def test_admin_cannot_delete_self(db, site_admin, site_admin_client):
    resp = site_admin_client.delete(f"/api/admin/users/{site_admin.id}")
    assert resp.status_code == 403
    db.expire_all()
    assert db.get(User, site_admin.id) is not None
    assert db.query(AuditLog).count() == 0


def test_admin_deletes_other_user(db, site_admin_client):
    target = make_user(db, "leaver")
    target_id = target.id
    assert site_admin_client.delete(f"/api/admin/users/{target_id}").status_code == 200
    db.expire_all()
    assert db.get(User, target_id) is None
    entry = db.query(AuditLog).one()
    assert entry.action == "delete_user"
    assert entry.details["username"] == "leaver"
    assert site_admin_client.delete(f"/api/admin/users/{target_id}").status_code == 404


def test_company_management(db, company, site_admin_client):
    resp = site_admin_client.get("/api/admin/companies")
    assert resp.json()[0]["owner"] == "olga"

    created = site_admin_client.post("/api/admin/companies", json={"name": "Initech"}).json()
    resp = site_admin_client.put(f"/api/admin/companies/{created['id']}", json={"name": "Initrode"})
    assert resp.json()["name"] == "Initrode"
    assert site_admin_client.delete(f"/api/admin/companies/{created['id']}").status_code == 200
    db.expire_all()
    assert db.get(Company, created["id"]) is None
    actions = [e.action for e in db.query(AuditLog).order_by(AuditLog.id)]
    assert actions == ["create_company", "edit_company", "delete_company"]


def test_metrics(db, company, site_admin_client):
    site_admin_client.post("/api/admin/companies", json={"name": "Initech"})
    body = site_admin_client.get("/api/admin/metrics").json()
    assert body["users"] == 4
    assert body["companies"] == 2
    assert body["logs"] == 1
    assert len(body["activity"]) == 1
    assert body["activity"][0]["count"] == 1


def test_logs_pagination_and_csv(db, site_admin, site_admin_client):
    for i in range(25):
        site_admin_client.post("/api/admin/companies", json={"name": f"Co {i}"})

    page = site_admin_client.get("/api/admin/logs", params={"page": 2, "page_size": 20}).json()
    assert page["total"] == 25
    assert len(page["logs"]) == 5
    assert page["logs"][0]["user"] == "root"

    filtered = site_admin_client.get("/api/admin/logs", params={"action": "delete"}).json()
    assert filtered["total"] == 0

    resp = site_admin_client.get("/api/admin/logs", params={"export": "csv"})
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/csv")
    assert "logs.csv" in resp.headers["content-disposition"]
    rows = list(csv.reader(io.StringIO(resp.text)))
    assert rows[0] == ["ID", "User", "Action", "Details", "CreatedAt"]
    assert len(rows) == 26


def test_logs_bad_date(db, site_admin_client):
    assert site_admin_client.get("/api/admin/logs", params={"from": "soon"}).status_code == 400
    assert site_admin_client.get("/api/admin/logs", params={"export": "xml"}).status_code == 400


def test_settings_update(db, site_admin_client):
    body = site_admin_client.get("/api/admin/settings").json()
    assert "activeSupportModeratorId" in body["settings"]

    resp = site_admin_client.post("/api/admin/settings", json={"siteTitle": "Acme Hub"})
    assert resp.status_code == 200
    db.expire_all()
    assert db.get(Setting, "siteTitle").value == "Acme Hub"
    assert db.query(AuditLog).filter(AuditLog.action == "update_settings").count() == 1


def test_settings_unknown_key_rejects_whole_update(db, site_admin_client):
    resp = site_admin_client.post("/api/admin/settings", json={"siteTitle": "X", "bogus": "1"})
    assert resp.status_code == 400
    db.expire_all()
    assert db.get(Setting, "siteTitle").value == "CompanySync"
