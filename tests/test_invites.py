from companysync.models.models import CompanyInvite, CompanyUser
from conftest import client_for, make_user


def invite(client, company_id, email, role="member"):
    return client.post(f"/api/companies/{company_id}/invites", json={"email": email, "role": role})


def test_invite_accept_flow(db, company, admin_member_client):
    guest = make_user(db, "gina")
    guest_client = client_for(guest)

    resp = invite(admin_member_client, company.id, "gina@example.com", role="admin")
    assert resp.status_code == 201

    mine = guest_client.get("/api/me/invites").json()
    assert len(mine) == 1
    assert mine[0]["company_name"] == "Acme"
    assert mine[0]["status"] == "pending"

    resp = guest_client.post(f"/api/me/invites/{mine[0]['id']}", json={"action": "accept"})
    assert resp.status_code == 200
    assert resp.json()["status"] == "accepted"
    membership = (
        db.query(CompanyUser)
        .filter(CompanyUser.company_id == company.id, CompanyUser.user_id == guest.id)
        .one()
    )
    assert membership.role_in_company == "admin"

    # Already handled
    resp = guest_client.post(f"/api/me/invites/{mine[0]['id']}", json={"action": "accept"})
    assert resp.status_code == 400


def test_decline(db, company, owner_client):
    guest = make_user(db, "gina")
    inv = invite(owner_client, company.id, "gina@example.com").json()
    resp = client_for(guest).post(f"/api/me/invites/{inv['id']}", json={"action": "decline"})
    assert resp.status_code == 200
    assert resp.json()["status"] == "declined"
    assert db.query(CompanyUser).filter(CompanyUser.user_id == guest.id).count() == 0


def test_invite_conflicts(db, company, owner_client):
    assert invite(owner_client, company.id, "mila@example.com").status_code == 409
    assert invite(owner_client, company.id, "new@example.com").status_code == 201
    assert invite(owner_client, company.id, "new@example.com").status_code == 409


def test_members_cannot_invite(db, company, member_client):
    assert invite(member_client, company.id, "new@example.com").status_code == 403


def test_cannot_handle_someone_elses_invite(db, company, owner_client, outsider_client):
    inv = invite(owner_client, company.id, "new@example.com").json()
    resp = outsider_client.post(f"/api/me/invites/{inv['id']}", json={"action": "accept"})
    assert resp.status_code == 403
    db.expire_all()
    assert db.get(CompanyInvite, inv["id"]).status == "pending"
