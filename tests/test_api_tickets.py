from support_desk.app.core.security import create_access_token


def test_health(api):
    resp = api.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


def test_requests_without_token_are_unauthorized(api, people):
    resp = api.get("/api/v1/tickets")
    assert resp.status_code == 401


def test_token_for_unknown_account_is_unauthorized(api, people):
    token = create_access_token({"sub": "ghost@desk.test"})
    resp = api.get("/api/v1/tickets", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 401


def test_login_and_me(api, people):
    resp = api.post("/api/v1/auth/login", json={"email": "carol@acme.test", "password": "secret"})
    assert resp.status_code == 200
    token = resp.json()["access_token"]

    me = api.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    assert me.json()["role"] == "customer"
    assert me.json()["customer_id"] == people.acme.id


def test_login_with_wrong_password(api, people):
    resp = api.post("/api/v1/auth/login", json={"email": "carol@acme.test", "password": "nope"})
    assert resp.status_code == 401


def test_customer_opens_ticket_for_own_customer(api, headers, people):
    resp = api.post(
        "/api/v1/tickets",
        json={"subject": "  Invoice missing  ", "body": "Where is it?", "priority": "NORMAL"},
        headers=headers.carol,
    )
    assert resp.status_code == 201
    body = resp.json()
    ticket = body["ticket"]
    assert ticket["status"] == "OPEN"
    assert ticket["priority"] == "MEDIUM"
    assert ticket["subject"] == "Invoice missing"
    assert ticket["customer"]["id"] == people.acme.id
    assert ticket["creator"]["id"] == people.carol.id
    assert ticket["assigned_to"] is None
    assert body["message"]["sender_type"] == "CUSTOMER"
    assert body["message"]["body"] == "Where is it?"


def test_staff_must_name_a_known_customer(api, headers):
    resp = api.post("/api/v1/tickets", json={"subject": "Call back", "body": "x"}, headers=headers.ana)
    assert resp.status_code == 404
    assert resp.json()["detail"]["code"] == "customer_not_found"


def test_staff_opens_ticket_for_customer(api, headers, people):
    resp = api.post(
        "/api/v1/tickets",
        json={"subject": "Renewal", "body": "Your plan expires", "customer_id": people.globex.id},
        headers=headers.ana,
    )
    assert resp.status_code == 201
    assert resp.json()["message"]["sender_type"] == "STAFF"


def test_customer_cannot_see_other_customers_ticket(api, headers, open_ticket):
    ticket = open_ticket()
    resp = api.get(f"/api/v1/tickets/{ticket['id']}", headers=headers.dave)
    assert resp.status_code == 403
    assert resp.json()["detail"]["code"] == "forbidden"


def test_unknown_ticket_is_not_found(api, headers, people):
    resp = api.get("/api/v1/tickets/does-not-exist", headers=headers.ana)
    assert resp.status_code == 404
    assert resp.json()["detail"]["code"] == "ticket_not_found"


def test_ticket_list_visibility_and_filters(api, headers, people, open_ticket):
    first = open_ticket(subject="Printer")
    open_ticket(subject="Scanner", status="CLOSED")
    api.post(
        "/api/v1/tickets",
        json={"subject": "Globex issue", "body": "x", "customer_id": people.globex.id},
        headers=headers.ana,
    )

    staff_view = api.get("/api/v1/tickets", headers=headers.ana).json()
    assert staff_view["count"] == 3

    carol_view = api.get("/api/v1/tickets", headers=headers.carol).json()
    assert carol_view["count"] == 2
    assert {t["customer"]["id"] for t in carol_view["data"]} == {people.acme.id}

    open_only = api.get("/api/v1/tickets", params={"status": "OPEN"}, headers=headers.carol).json()
    assert [t["id"] for t in open_only["data"]] == [first["id"]]

    search = api.get("/api/v1/tickets", params={"search": "Scan"}, headers=headers.ana).json()
    assert [t["subject"] for t in search["data"]] == ["Scanner"]

    paged = api.get("/api/v1/tickets", params={"page": 2, "page-size": 2}, headers=headers.ana).json()
    assert paged["count"] == 3
    assert len(paged["data"]) == 1


def test_ticket_list_rejects_unknown_priority(api, headers, people):
    resp = api.get("/api/v1/tickets", params={"priority": "CRITICAL"}, headers=headers.ana)
    assert resp.status_code == 422


def test_customer_reply_moves_waiting_customer_to_waiting_support(api, headers, open_ticket):
    ticket = open_ticket(status="WAITING_CUSTOMER")
    resp = api.post(f"/api/v1/tickets/{ticket['id']}/reply", json={"body": "thanks"}, headers=headers.carol)
    assert resp.status_code == 201
    body = resp.json()
    assert body["ticket"] == {"id": ticket["id"], "status": "WAITING_SUPPORT"}
    assert body["message"]["body"] == "thanks"
    assert body["message"]["sender"]["first_name"] == "Carol"


def test_staff_reply_moves_open_to_waiting_customer(api, headers, open_ticket):
    ticket = open_ticket()
    resp = api.post(f"/api/v1/tickets/{ticket['id']}/reply", json={"body": "On it"}, headers=headers.ana)
    assert resp.status_code == 201
    assert resp.json()["ticket"]["status"] == "WAITING_CUSTOMER"


def test_closed_ticket_rejects_replies_from_both_roles(api, headers, open_ticket):
    ticket = open_ticket(status="CLOSED")
    for hdrs in (headers.ana, headers.carol):
        resp = api.post(f"/api/v1/tickets/{ticket['id']}/reply", json={"body": "hello?"}, headers=hdrs)
        assert resp.status_code == 409
        assert resp.json()["detail"]["code"] == "ticket_closed"

    messages = api.get(f"/api/v1/tickets/{ticket['id']}/messages", headers=headers.ana).json()
    assert messages["count"] == 1


def test_resolved_ticket_accepts_staff_note_but_not_customer_reply(api, headers, open_ticket, caplog):
    ticket = open_ticket(status="RESOLVED")
    with caplog.at_level("WARNING", logger="support_desk.app.services.ticket_service"):
        customer = api.post(f"/api/v1/tickets/{ticket['id']}/reply", json={"body": "wait"}, headers=headers.carol)
    assert customer.status_code == 409
    assert customer.json()["detail"]["code"] == "ticket_closed"
    assert any(
        "RESOLVED" in r.getMessage() and ticket["id"] in r.getMessage() for r in caplog.records
    )

    staff = api.post(f"/api/v1/tickets/{ticket['id']}/reply", json={"body": "note"}, headers=headers.ana)
    assert staff.status_code == 201
    assert staff.json()["ticket"]["status"] == "RESOLVED"


def test_empty_reply_is_rejected(api, headers, open_ticket):
    ticket = open_ticket()
    resp = api.post(f"/api/v1/tickets/{ticket['id']}/reply", json={"body": "   "}, headers=headers.carol)
    assert resp.status_code == 422
    assert resp.json()["detail"]["code"] == "empty_reply"


def test_messages_are_ordered_and_returned_verbatim(api, headers, open_ticket):
    ticket = open_ticket(body="first")
    bodies = [f"<b>{i}</b> & \"quoted\"" for i in range(4)]
    for body, hdrs in zip(bodies, [headers.ana, headers.carol, headers.ana, headers.carol]):
        resp = api.post(f"/api/v1/tickets/{ticket['id']}/reply", json={"body": body}, headers=hdrs)
        assert resp.status_code == 201
        assert resp.json()["message"]["body"] == body

    data = api.get(f"/api/v1/tickets/{ticket['id']}/messages", headers=headers.carol).json()["data"]
    assert [m["body"] for m in data] == ["first"] + bodies
    stamps = [m["created_at"] for m in data]
    assert stamps == sorted(stamps)
    assert len(set(stamps)) == len(stamps)


def test_messages_filter_by_sender_type(api, headers, open_ticket):
    ticket = open_ticket()
    api.post(f"/api/v1/tickets/{ticket['id']}/reply", json={"body": "staff"}, headers=headers.ana)
    resp = api.get(
        f"/api/v1/tickets/{ticket['id']}/messages", params={"sender_type": "STAFF"}, headers=headers.ana
    )
    assert [m["body"] for m in resp.json()["data"]] == ["staff"]


def test_customer_cannot_change_status(api, headers, open_ticket):
    ticket = open_ticket()
    resp = api.patch(f"/api/v1/tickets/{ticket['id']}/status", json={"status": "CLOSED"}, headers=headers.carol)
    assert resp.status_code == 403


def test_staff_status_override_stamps_and_clears_closed_at(api, headers, open_ticket):
    ticket = open_ticket()
    closed = api.patch(f"/api/v1/tickets/{ticket['id']}/status", json={"status": "CLOSED"}, headers=headers.ana)
    assert closed.status_code == 200
    assert closed.json()["status"] == "CLOSED"
    assert closed.json()["closed_at"]

    reopened = api.patch(
        f"/api/v1/tickets/{ticket['id']}/status", json={"status": "reopened"}, headers=headers.ana
    )
    assert reopened.json()["status"] == "REOPENED"
    assert reopened.json()["closed_at"] is None


def test_setting_same_status_is_a_no_op(api, headers, open_ticket):
    ticket = open_ticket()
    resp = api.patch(f"/api/v1/tickets/{ticket['id']}/status", json={"status": "OPEN"}, headers=headers.ana)
    assert resp.status_code == 200
    assert resp.json()["updated_at"] == ticket["updated_at"]


def test_unknown_status_is_rejected(api, headers, open_ticket):
    ticket = open_ticket()
    resp = api.patch(f"/api/v1/tickets/{ticket['id']}/status", json={"status": "PENDING"}, headers=headers.ana)
    assert resp.status_code == 422


def test_reassignment_overwrites_in_any_status(api, headers, people, open_ticket):
    ticket = open_ticket(status="CLOSED")
    first = api.patch(f"/api/v1/tickets/{ticket['id']}/assign", json={"staff_id": people.ana.id}, headers=headers.ana)
    assert first.status_code == 200
    assert first.json()["assigned_to"]["id"] == people.ana.id

    second = api.patch(f"/api/v1/tickets/{ticket['id']}/assign", json={"staff_id": people.ben.id}, headers=headers.ana)
    assert second.status_code == 200
    assert second.json()["assigned_to"]["id"] == people.ben.id
    assert second.json()["status"] == "CLOSED"


def test_assign_requires_staff_target(api, headers, people, open_ticket):
    ticket = open_ticket()
    resp = api.patch(
        f"/api/v1/tickets/{ticket['id']}/assign", json={"staff_id": people.carol.id}, headers=headers.ana
    )
    assert resp.status_code == 404
    assert resp.json()["detail"]["code"] == "staff_not_found"


def test_customer_cannot_assign(api, headers, people, open_ticket):
    ticket = open_ticket()
    resp = api.patch(
        f"/api/v1/tickets/{ticket['id']}/assign", json={"staff_id": people.ana.id}, headers=headers.carol
    )
    assert resp.status_code == 403


def test_staff_list_is_staff_only(api, headers, people):
    resp = api.get("/api/v1/staff", headers=headers.ana)
    assert resp.status_code == 200
    assert [p["first_name"] for p in resp.json()] == ["Ana", "Ben"]

    assert api.get("/api/v1/staff", headers=headers.carol).status_code == 403


def test_history_records_mutations(api, headers, people, open_ticket):
    ticket = open_ticket()
    api.post(f"/api/v1/tickets/{ticket['id']}/reply", json={"body": "hi"}, headers=headers.ana)
    api.patch(f"/api/v1/tickets/{ticket['id']}/assign", json={"staff_id": people.ben.id}, headers=headers.ana)
    api.patch(f"/api/v1/tickets/{ticket['id']}/status", json={"status": "RESOLVED"}, headers=headers.ana)

    resp = api.get(f"/api/v1/tickets/{ticket['id']}/history", headers=headers.ana)
    assert resp.status_code == 200
    actions = {entry["action"] for entry in resp.json()}
    assert {"create", "reply", "status", "assign"} <= actions
