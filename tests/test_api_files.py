import asyncio
from pathlib import Path

import pytest

from support_desk.app.core.config import settings
from support_desk.app.services.file_service import FileService

PNG = b"\x89PNG\r\n\x1a\n fake image"


def stored_files(tmp_path):
    root = tmp_path / "uploads"
    return sorted(p.name for p in root.iterdir()) if root.exists() else []


def test_upload_preserves_order_and_marks_images(upload, headers):
    refs = upload(
        headers.carol,
        ("log.txt", b"line 1", "text/plain"),
        ("shot.png", PNG, "image/png"),
        ("notes.txt", b"more", "text/plain"),
    )
    assert [r["name"] for r in refs] == ["log.txt", "shot.png", "notes.txt"]
    assert refs[0]["thumbnail"] is None
    assert refs[1]["thumbnail"] == refs[1]["url"]
    assert refs[1]["url"].endswith(f"/api/v1/files/{refs[1]['id']}")
    assert refs[1]["size"] == len(PNG)


def test_reply_binds_attachments_in_given_order(api, headers, open_ticket, upload):
    ticket = open_ticket()
    a, b = upload(headers.carol, ("a.txt", b"a", "text/plain"), ("b.txt", b"b", "text/plain"))
    resp = api.post(
        f"/api/v1/tickets/{ticket['id']}/reply",
        json={"body": "", "attachment_ids": [b["id"], a["id"]]},
        headers=headers.carol,
    )
    assert resp.status_code == 201
    assert [x["id"] for x in resp.json()["message"]["attachments"]] == [b["id"], a["id"]]

    data = api.get(f"/api/v1/tickets/{ticket['id']}/messages", headers=headers.ana).json()["data"]
    assert [x["id"] for x in data[-1]["attachments"]] == [b["id"], a["id"]]
    assert data[-1]["body"] == ""


def test_ticket_can_open_with_attachments(api, headers, upload):
    (ref,) = upload(headers.carol, ("error.png", PNG, "image/png"))
    resp = api.post(
        "/api/v1/tickets",
        json={"subject": "Screen", "attachment_ids": [ref["id"]]},
        headers=headers.carol,
    )
    assert resp.status_code == 201
    assert resp.json()["message"]["attachments"][0]["id"] == ref["id"]


@pytest.mark.parametrize("case", ["unknown", "already_bound", "foreign", "duplicate"])
def test_reply_rejects_unclaimable_attachments(api, headers, open_ticket, upload, case):
    ticket = open_ticket()
    url = f"/api/v1/tickets/{ticket['id']}/reply"
    if case == "unknown":
        ids = ["no-such-file"]
    elif case == "already_bound":
        (ref,) = upload(headers.carol, ("a.txt", b"a", "text/plain"))
        assert api.post(url, json={"attachment_ids": [ref["id"]]}, headers=headers.carol).status_code == 201
        ids = [ref["id"]]
    elif case == "foreign":
        (ref,) = upload(headers.ana, ("a.txt", b"a", "text/plain"))
        ids = [ref["id"]]
    else:
        (ref,) = upload(headers.carol, ("a.txt", b"a", "text/plain"))
        ids = [ref["id"], ref["id"]]

    before = api.get(f"/api/v1/tickets/{ticket['id']}/messages", headers=headers.ana).json()["count"]
    resp = api.post(url, json={"body": "see file", "attachment_ids": ids}, headers=headers.carol)
    assert resp.status_code == 404
    assert resp.json()["detail"]["code"] == "attachment_not_found"
    after = api.get(f"/api/v1/tickets/{ticket['id']}/messages", headers=headers.ana).json()["count"]
    assert after == before


def test_oversized_file_rejects_whole_batch(api, headers, db, monkeypatch):
    monkeypatch.setattr(settings, "max_upload_bytes", 4)
    resp = api.post(
        "/api/v1/files",
        files=[("files", ("ok.txt", b"ok", "text/plain")), ("files", ("big.txt", b"too big", "text/plain"))],
        headers=headers.carol,
    )
    assert resp.status_code == 413
    assert resp.json()["detail"]["code"] == "upload_too_large"
    assert stored_files(db) == []
    assert asyncio.run(FileService.list_orphans()) == []


def test_too_many_files_are_rejected(api, headers, monkeypatch):
    monkeypatch.setattr(settings, "max_files_per_upload", 1)
    resp = api.post(
        "/api/v1/files",
        files=[("files", ("a.txt", b"a", "text/plain")), ("files", ("b.txt", b"b", "text/plain"))],
        headers=headers.carol,
    )
    assert resp.status_code == 400
    assert resp.json()["detail"]["code"] == "upload_rejected"


def test_empty_file_is_rejected(api, headers):
    resp = api.post("/api/v1/files", files=[("files", ("empty.txt", b"", "text/plain"))], headers=headers.carol)
    assert resp.status_code == 400


def test_write_failure_removes_files_already_written(db, people, monkeypatch):
    real_write = Path.write_bytes
    calls = []

    def flaky_write(self, data):
        calls.append(self)
        if len(calls) == 2:
            raise OSError("disk full")
        return real_write(self, data)

    monkeypatch.setattr(Path, "write_bytes", flaky_write)
    user = {"user_id": people.carol.id, "role": "customer", "customer_id": people.acme.id}
    with pytest.raises(OSError):
        asyncio.run(
            FileService.upload_files([("a.txt", "text/plain", b"a"), ("b.txt", "text/plain", b"b")], user)
        )
    assert stored_files(db) == []
    assert asyncio.run(FileService.list_orphans()) == []


def test_download_access(api, headers, open_ticket, upload):
    ticket = open_ticket()
    (ref,) = upload(headers.carol, ("a.txt", b"hello", "text/plain"))

    own = api.get(f"/api/v1/files/{ref['id']}", headers=headers.carol)
    assert own.status_code == 200
    assert own.content == b"hello"

    # Not bound to a message yet: only the uploader may read it.
    assert api.get(f"/api/v1/files/{ref['id']}", headers=headers.ana).status_code == 403

    api.post(f"/api/v1/tickets/{ticket['id']}/reply", json={"attachment_ids": [ref["id"]]}, headers=headers.carol)
    assert api.get(f"/api/v1/files/{ref['id']}", headers=headers.ana).status_code == 200
    assert api.get(f"/api/v1/files/{ref['id']}", headers=headers.dave).status_code == 403
    assert api.get("/api/v1/files/missing", headers=headers.ana).status_code == 404


def test_orphans_are_listed_until_claimed(api, headers, open_ticket, upload):
    ticket = open_ticket()
    a, b = upload(headers.carol, ("a.txt", b"a", "text/plain"), ("b.txt", b"b", "text/plain"))
    api.post(f"/api/v1/tickets/{ticket['id']}/reply", json={"attachment_ids": [a["id"]]}, headers=headers.carol)

    orphans = asyncio.run(FileService.list_orphans())
    assert [o["id"] for o in orphans] == [b["id"]]
    assert asyncio.run(FileService.list_orphans(older_than="2000-01-01")) == []
