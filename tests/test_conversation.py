from unittest.mock import MagicMock

import pytest

from support_desk.client import SupportDeskClient
from support_desk.console import errors
from support_desk.console.conversation import BUSY_MESSAGE, TicketConversation
from support_desk.console.uploads import StageState
from support_desk.lifecycle import Role, TicketStatus


@pytest.fixture()
def conversation(desk_client, people):
    """Open a loaded conversation for a ticket, spying on the client."""

    def _open(ticket_id, user, role):
        spy = MagicMock(wraps=desk_client(user))
        conv = TicketConversation(spy, ticket_id, role)
        assert conv.load(), conv.status_message
        spy.reset_mock()
        return conv, spy

    return _open


def test_customer_thanks_moves_ticket_to_waiting_support(conversation, people, open_ticket):
    ticket = open_ticket(status="WAITING_CUSTOMER")
    conv, spy = conversation(ticket["id"], people.carol, Role.CUSTOMER)
    previous = conv.messages

    conv.set_composer("thanks")
    assert conv.submit_reply() is True

    assert conv.ticket.status is TicketStatus.WAITING_SUPPORT
    assert conv.composer == ""
    assert conv.messages[:-1] == previous
    assert conv.messages[-1].body == "thanks"
    assert conv.status_message is None
    spy.get_ticket_messages.assert_not_called()
    spy.upload_files.assert_not_called()
    assert conv.view().status_label == "Waiting for support"


def test_reply_text_is_shown_as_typed(conversation, desk_client, people, open_ticket):
    ticket = open_ticket()
    conv, _ = conversation(ticket["id"], people.carol, Role.CUSTOMER)
    text = 'if a < b && c > "d"'

    conv.set_composer(text)
    assert conv.submit_reply() is True
    assert conv.view().rows[-1].body == text
    assert desk_client(people.ana).get_ticket_messages(ticket["id"])[-1].body == text


def test_staff_cannot_reply_to_closed_ticket(conversation, people, open_ticket):
    ticket = open_ticket(status="CLOSED")
    conv, spy = conversation(ticket["id"], people.ana, Role.STAFF)

    assert conv.view().composer_enabled is False
    conv.set_composer("anyone there?")
    assert conv.submit_reply() is False
    assert conv.status_message == errors.TicketClosedError().user_message
    assert conv.composer == "anyone there?"
    spy.submit_reply.assert_not_called()


def test_removed_file_is_not_sent(conversation, people, open_ticket):
    ticket = open_ticket()
    conv, spy = conversation(ticket["id"], people.carol, Role.CUSTOMER)

    conv.stage_file("one.txt", b"1")
    second = conv.stage_file("two.png", b"\x89PNG")
    conv.stage_file("three.txt", b"3")
    assert conv.remove_staged(second.local_id)

    assert conv.submit_reply() is True
    sent = spy.upload_files.call_args.args[0]
    assert [name for name, _, _ in sent] == ["one.txt", "three.txt"]
    assert [a.name for a in conv.messages[-1].attachments] == ["one.txt", "three.txt"]
    assert len(conv.stager) == 0
    assert second.preview is None


def test_reassignment_overwrites(conversation, people, open_ticket):
    ticket = open_ticket()
    conv, spy = conversation(ticket["id"], people.ana, Role.STAFF)

    assert conv.assign(people.ana.id)
    assert conv.view().assign_label == "Change assignment"
    assert conv.assign(people.ben.id)
    assert conv.ticket.assigned_to.id == people.ben.id
    assert conv.status_message is None
    assert spy.get_ticket.call_count == 2


def test_new_message_is_not_older_than_loaded_ones(conversation, people, open_ticket, api, headers):
    ticket = open_ticket()
    for body in ("a", "b", "c"):
        api.post(f"/api/v1/tickets/{ticket['id']}/reply", json={"body": body}, headers=headers.ana)
    conv, _ = conversation(ticket["id"], people.carol, Role.CUSTOMER)

    conv.set_composer("d")
    assert conv.submit_reply()
    newest = conv.messages[-1].created_at
    assert all(newest >= m.created_at for m in conv.messages[:-1])


def test_upload_failure_keeps_composer_and_files(conversation, people, open_ticket):
    ticket = open_ticket()
    conv, spy = conversation(ticket["id"], people.carol, Role.CUSTOMER)
    spy.upload_files.side_effect = errors.TransportError("connection reset")

    conv.set_composer("see attached")
    conv.stage_file("log.txt", b"log")
    assert conv.submit_reply() is False

    assert conv.status_message == "connection reset"
    assert conv.composer == "see attached"
    assert [f.state for f in conv.stager.active()] == [StageState.STAGED]
    spy.submit_reply.assert_not_called()
    assert conv.uploading is False and conv.replying is False


def test_rejected_reply_keeps_composer(conversation, people, open_ticket, api, headers):
    ticket = open_ticket()
    conv, _ = conversation(ticket["id"], people.carol, Role.CUSTOMER)
    api.patch(f"/api/v1/tickets/{ticket['id']}/status", json={"status": "CLOSED"}, headers=headers.ana)

    conv.set_composer("one more thing")
    conv.stage_file("a.txt", b"a")
    assert conv.submit_reply() is False
    assert conv.status_message == errors.TicketClosedError().user_message
    assert conv.composer == "one more thing"
    assert len(conv.stager) == 1

    assert conv.refresh_ticket()
    assert conv.view().composer_enabled is False


def test_missing_attachment_forces_a_fresh_upload():
    client = MagicMock()
    conv = TicketConversation(client, "t1", Role.CUSTOMER)
    conv.ticket = MagicMock(status=TicketStatus.OPEN, id="t1")
    client.upload_files.side_effect = lambda files: [MagicMock(id="f1")]
    client.submit_reply.side_effect = errors.AttachmentNotFoundError()

    conv.stage_file("a.txt", b"a")
    assert conv.submit_reply() is False
    assert conv.status_message == errors.AttachmentNotFoundError().user_message
    assert [f.state for f in conv.stager.active()] == [StageState.STAGED]


def test_empty_reply_makes_no_request(conversation, people, open_ticket):
    ticket = open_ticket()
    conv, spy = conversation(ticket["id"], people.carol, Role.CUSTOMER)
    conv.set_composer("   ")
    assert conv.submit_reply() is False
    assert conv.status_message == errors.EmptyReplyError().user_message
    spy.submit_reply.assert_not_called()


def test_status_change_reloads_ticket(conversation, people, open_ticket):
    ticket = open_ticket()
    conv, spy = conversation(ticket["id"], people.ana, Role.STAFF)

    assert conv.change_status("resolved")
    assert conv.ticket.status is TicketStatus.RESOLVED
    spy.change_ticket_status.assert_called_once_with(ticket["id"], "RESOLVED")
    spy.get_ticket.assert_called_once_with(ticket["id"])
    assert conv.view().composer_enabled is True


def test_customer_has_no_admin_operations(conversation, people, open_ticket):
    ticket = open_ticket()
    conv, spy = conversation(ticket["id"], people.carol, Role.CUSTOMER)

    assert conv.change_status("CLOSED") is False
    assert conv.assign(people.ana.id) is False
    assert conv.load_staff() is False
    assert conv.status_message == errors.ForbiddenError().user_message
    spy.change_ticket_status.assert_not_called()
    spy.assign_ticket.assert_not_called()
    assert conv.view().show_admin_controls is False


def test_load_staff_for_picker(conversation, people, open_ticket):
    ticket = open_ticket()
    conv, _ = conversation(ticket["id"], people.ana, Role.STAFF)
    assert conv.load_staff()
    assert [p.id for p in conv.staff] == [people.ana.id, people.ben.id]


def test_operations_are_single_flight():
    client = MagicMock()
    conv = TicketConversation(client, "t1", Role.STAFF)
    conv.ticket = MagicMock(status=TicketStatus.OPEN, id="t1")
    conv.set_composer("hello")

    with conv._operation():
        assert conv.submit_reply() is False
        assert conv.status_message == BUSY_MESSAGE
        assert conv.load() is False
        assert conv.stage_file("a.txt", b"a") is None
    client.submit_reply.assert_not_called()
    client.get_ticket.assert_not_called()


def test_load_failure_is_reported(desk_client, people):
    conv = TicketConversation(desk_client(people.carol), "missing", Role.CUSTOMER)
    assert conv.load() is False
    assert conv.status_message
    assert conv.view() is None


def test_malformed_upload_answer_is_reported_not_raised():
    session = MagicMock()
    answer = MagicMock(status_code=201, content=b"x")
    answer.json.return_value = [{"url": "u"}]
    session.request.return_value = answer
    conv = TicketConversation(SupportDeskClient(base_url="http://desk.test", session=session), "t1", Role.CUSTOMER)
    conv.ticket = MagicMock(status=TicketStatus.OPEN, id="t1")

    conv.set_composer("see attached")
    conv.stage_file("a.txt", b"a")
    assert conv.submit_reply() is False
    assert conv.status_message
    assert conv.composer == "see attached"
    assert [f.state for f in conv.stager.active()] == [StageState.STAGED]


def test_malformed_staff_list_is_reported_not_raised():
    session = MagicMock()
    answer = MagicMock(status_code=200, content=b"x")
    answer.json.return_value = [{"first_name": "Ana"}]
    session.request.return_value = answer
    conv = TicketConversation(SupportDeskClient(base_url="http://desk.test", session=session), "t1", Role.STAFF)

    assert conv.load_staff() is False
    assert conv.status_message
    assert conv.staff == ()
