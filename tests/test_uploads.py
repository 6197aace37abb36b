from unittest.mock import MagicMock

import pytest

from support_desk.console.errors import TransportError
from support_desk.console.models import Attachment
from support_desk.console.uploads import AttachmentStager, StageState


def _refs(files):
    return [Attachment(id=f"id-{name}", url=f"/api/v1/files/id-{name}", name=name) for name, _, _ in files]


@pytest.fixture()
def client():
    fake = MagicMock()
    fake.upload_files.side_effect = _refs
    return fake


def test_images_get_a_preview_and_other_files_do_not():
    stager = AttachmentStager()
    image = stager.stage("shot.png", b"\x89PNG")
    text = stager.stage("log.txt", b"hello")
    assert image.content_type == "image/png"
    assert image.preview.startswith("data:image/png;base64,")
    assert text.preview is None


def test_removing_a_staged_file_skips_it_on_upload(client):
    stager = AttachmentStager()
    first = stager.stage("one.txt", b"1")
    second = stager.stage("two.txt", b"2")
    third = stager.stage("three.txt", b"3")

    assert stager.remove(second.local_id) is True
    assert second.state is StageState.REMOVED
    refs = stager.upload_all(client)

    sent = client.upload_files.call_args.args[0]
    assert [name for name, _, _ in sent] == ["one.txt", "three.txt"]
    assert [r.name for r in refs] == ["one.txt", "three.txt"]
    assert first.state is StageState.ATTACHED and third.state is StageState.ATTACHED


def test_remove_releases_preview_and_unknown_ids_are_ignored():
    stager = AttachmentStager()
    image = stager.stage("a.jpg", b"jpeg")
    assert stager.remove(image.local_id)
    assert image.preview is None
    assert stager.remove(image.local_id) is False
    assert len(stager) == 0


def test_failed_batch_returns_every_file_to_staged(client):
    client.upload_files.side_effect = TransportError("down")
    stager = AttachmentStager()
    stager.stage("a.txt", b"a")
    stager.stage("b.txt", b"b")

    with pytest.raises(TransportError):
        stager.upload_all(client)
    assert [f.state for f in stager.active()] == [StageState.STAGED, StageState.STAGED]
    assert all(f.attachment is None for f in stager.active())


def test_short_answer_is_a_transport_error(client):
    client.upload_files.side_effect = lambda files: _refs(files)[:1]
    stager = AttachmentStager()
    stager.stage("a.txt", b"a")
    stager.stage("b.txt", b"b")

    with pytest.raises(TransportError):
        stager.upload_all(client)
    assert {f.state for f in stager.active()} == {StageState.STAGED}


def test_uploaded_files_are_not_uploaded_again(client):
    stager = AttachmentStager()
    stager.stage("a.txt", b"a")
    stager.upload_all(client)
    stager.stage("b.txt", b"b")

    refs = stager.upload_all(client)
    assert [r.name for r in refs] == ["a.txt", "b.txt"]
    assert [c.args[0][0][0] for c in client.upload_files.call_args_list] == ["a.txt", "b.txt"]


def test_nothing_staged_makes_no_upload(client):
    assert AttachmentStager().upload_all(client) == []
    client.upload_files.assert_not_called()


def test_forget_uploads_and_clear(client):
    stager = AttachmentStager()
    image = stager.stage("a.png", b"png")
    stager.upload_all(client)

    stager.forget_uploads()
    assert image.state is StageState.STAGED and image.attachment is None

    stager.clear()
    assert len(stager) == 0
    assert image.preview is None


def test_stage_path_reads_from_disk(tmp_path):
    path = tmp_path / "report.pdf"
    path.write_bytes(b"%PDF")
    staged = AttachmentStager().stage_path(str(path))
    assert staged.name == "report.pdf"
    assert staged.content_type == "application/pdf"
    assert staged.size == 4
