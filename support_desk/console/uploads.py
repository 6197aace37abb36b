"""
Local staging of attachments before a reply is sent.

Files picked by the user are held in an :class:`AttachmentStager`
until the reply is submitted.  Each file moves through a small state
machine::

    STAGED ──upload──> UPLOADING ──ok──> ATTACHED
      │                   └──failure──> STAGED
      └──remove──> REMOVED

Removing a staged file never contacts the server.  Image files carry
a ``data:`` URI preview for display; it is dropped as soon as the file
is removed or the reply it belongs to has been sent.

:meth:`AttachmentStager.upload_all` is the first phase of sending a
reply: every staged file is uploaded in one batch, and the batch either
fully succeeds or every file goes back to ``STAGED``.
"""

from __future__ import annotations

import base64
import logging
import mimetypes
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import List, Optional, Tuple

from support_desk.console.errors import TransportError
from support_desk.console.models import Attachment

logger = logging.getLogger(__name__)


class StageState(str, Enum):
    STAGED = "staged"
    UPLOADING = "uploading"
    ATTACHED = "attached"
    REMOVED = "removed"


@dataclass
class StagedFile:
    """A file selected for the next reply."""

    local_id: int
    name: str
    content: bytes
    content_type: str
    state: StageState = StageState.STAGED
    preview: Optional[str] = None
    attachment: Optional[Attachment] = None

    @property
    def is_image(self) -> bool:
        return self.content_type.startswith("image/")

    @property
    def size(self) -> int:
        return len(self.content)

    def release_preview(self) -> None:
        self.preview = None


def guess_content_type(name: str) -> str:
    content_type, _ = mimetypes.guess_type(name)
    return content_type or "application/octet-stream"


def make_preview(content: bytes, content_type: str) -> Optional[str]:
    """Return a ``data:`` URI for image content, ``None`` for anything else."""
    if not content_type.startswith("image/"):
        return None
    encoded = base64.b64encode(content).decode("ascii")
    return f"data:{content_type};base64,{encoded}"


class AttachmentStager:
    """Ordered set of files waiting to be attached to the next reply."""

    def __init__(self) -> None:
        self._files: List[StagedFile] = []
        self._next_id = 1

    def stage(self, name: str, content: bytes, content_type: Optional[str] = None) -> StagedFile:
        """Add a file to the selection and return its staging record."""
        content_type = content_type or guess_content_type(name)
        staged = StagedFile(
            local_id=self._next_id,
            name=name,
            content=content,
            content_type=content_type,
            preview=make_preview(content, content_type),
        )
        self._next_id += 1
        self._files.append(staged)
        logger.debug("Staged %s (%d bytes) as #%d", name, staged.size, staged.local_id)
        return staged

    def stage_path(self, path: str) -> StagedFile:
        """Read a file from disk and stage it.  ``OSError`` propagates."""
        file_path = Path(path).expanduser()
        return self.stage(file_path.name, file_path.read_bytes())

    def remove(self, local_id: int) -> bool:
        """Drop a staged file from the selection.

        Only files still in ``STAGED`` (or already uploaded for a reply
        that has not been sent) can be removed.  Returns whether a file
        was removed.
        """
        for staged in self._files:
            if staged.local_id == local_id and staged.state in (StageState.STAGED, StageState.ATTACHED):
                staged.state = StageState.REMOVED
                staged.release_preview()
                self._files.remove(staged)
                logger.debug("Removed staged file #%d", local_id)
                return True
        return False

    def active(self) -> Tuple[StagedFile, ...]:
        """Files that will go with the next reply, in selection order."""
        return tuple(f for f in self._files if f.state is not StageState.REMOVED)

    def __len__(self) -> int:
        return len(self.active())

    def upload_all(self, client) -> List[Attachment]:
        """Upload every file that has no reference yet and return all references.

        Files that already hold a reference from an earlier attempt are
        not uploaded again.  The returned list has one reference per
        active file, in selection order.

        Raises
        ------
        SupportDeskError
            The batch failed.  Every file of the batch is back in
            ``STAGED``.
        """
        batch = [f for f in self.active() if f.state is StageState.STAGED]
        if batch:
            for staged in batch:
                staged.state = StageState.UPLOADING
            try:
                refs = client.upload_files([(f.name, f.content, f.content_type) for f in batch])
                if len(refs) != len(batch):
                    raise TransportError(
                        f"Upload returned {len(refs)} references for {len(batch)} files"
                    )
            except Exception:
                for staged in batch:
                    staged.state = StageState.STAGED
                raise
            for staged, ref in zip(batch, refs):
                staged.attachment = ref
                staged.state = StageState.ATTACHED
            logger.info("Uploaded %d attachment(s)", len(batch))
        return [f.attachment for f in self.active()]

    def forget_uploads(self) -> None:
        """Return uploaded files to ``STAGED`` so the next send uploads them again."""
        for staged in self.active():
            if staged.state is StageState.ATTACHED:
                staged.state = StageState.STAGED
                staged.attachment = None

    def clear(self) -> None:
        """Forget every file after its reply has been sent."""
        for staged in self._files:
            staged.release_preview()
        self._files = []
