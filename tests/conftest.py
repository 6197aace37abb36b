import asyncio
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from support_desk.app.core.config import settings
from support_desk.app.core.db import init_db
from support_desk.app.core.security import create_access_token
from support_desk.app.main import app
from support_desk.app.services.account_service import AccountService
from support_desk.client import SupportDeskClient
from support_desk.lifecycle import Role


@pytest.fixture()
def db(tmp_path, monkeypatch):
    """Fresh SQLite database and upload directory for each test."""
    monkeypatch.setattr(settings, "database_url", str(tmp_path / "support.db"))
    monkeypatch.setattr(settings, "upload_dir", str(tmp_path / "uploads"))
    init_db()
    return tmp_path


@pytest.fixture()
def people(db):
    run = asyncio.run
    acme = run(AccountService.create_customer("Acme", 1001, type="BUSINESS"))
    globex = run(AccountService.create_customer("Globex", 1002))
    ana = run(AccountService.create_user("ana@desk.test", Role.STAFF, password="secret", first_name="Ana", last_name="Agent"))
    ben = run(AccountService.create_user("ben@desk.test", Role.STAFF, first_name="Ben", last_name="Backup"))
    carol = run(
        AccountService.create_user(
            "carol@acme.test", Role.CUSTOMER, password="secret", first_name="Carol", customer_id=acme.id
        )
    )
    dave = run(AccountService.create_user("dave@globex.test", Role.CUSTOMER, first_name="Dave", customer_id=globex.id))
    return SimpleNamespace(acme=acme, globex=globex, ana=ana, ben=ben, carol=carol, dave=dave)


@pytest.fixture()
def api(db):
    return TestClient(app)


def auth(user) -> dict:
    return {"Authorization": f"Bearer {create_access_token({'sub': user.email})}"}


@pytest.fixture()
def headers(people):
    return SimpleNamespace(
        ana=auth(people.ana),
        ben=auth(people.ben),
        carol=auth(people.carol),
        dave=auth(people.dave),
    )


@pytest.fixture()
def desk_client(api):
    """Build a ``SupportDeskClient`` for a user that talks to the app in-process."""

    def _make(user) -> SupportDeskClient:
        return SupportDeskClient(
            base_url="http://testserver",
            token=create_access_token({"sub": user.email}),
            session=api,
        )

    return _make


@pytest.fixture()
def open_ticket(api, headers):
    """Open a ticket as Carol (Acme) and optionally move it to ``status``."""

    def _open(subject="Printer on fire", body="Please help", status=None, priority="MEDIUM"):
        resp = api.post(
            "/api/v1/tickets",
            json={"subject": subject, "body": body, "priority": priority},
            headers=headers.carol,
        )
        assert resp.status_code == 201, resp.text
        ticket = resp.json()["ticket"]
        if status:
            resp = api.patch(f"/api/v1/tickets/{ticket['id']}/status", json={"status": status}, headers=headers.ana)
            assert resp.status_code == 200, resp.text
            ticket = resp.json()
        return ticket

    return _open


@pytest.fixture()
def upload(api):
    """Upload ``(name, content, content_type)`` tuples and return the references."""

    def _upload(hdrs, *files):
        resp = api.post("/api/v1/files", files=[("files", f) for f in files], headers=hdrs)
        assert resp.status_code == 201, resp.text
        return resp.json()

    return _upload
