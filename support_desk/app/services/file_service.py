"""
Business logic for attachment uploads.

Attachments are stored in two phases.  ``FileService.upload_files``
writes a batch of files to ``settings.upload_dir`` and records them as
unattached rows owned by the uploader.  A later reply (or a new
ticket) claims them with :func:`claim_attachments`, which binds each
row to the created message in the order given.  A batch is
all-or-nothing: if any file is rejected or cannot be written, files
already written for that batch are removed and no row is recorded.

Uploads that are never claimed stay on disk; :meth:`list_orphans`
reports them.
"""

import logging
import os
import sqlite3
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from support_desk.app.core.config import settings
from support_desk.app.core.db import get_connection, new_id, resolve_path, utcnow
from support_desk.app.schemas.ticket import AttachmentRead

from .audit_service import AuditService
from .errors import AccessDeniedError, AttachmentNotFoundError, UploadRejectedError, UploadTooLargeError

logger = logging.getLogger(__name__)

# (original filename, content type, raw bytes)
IncomingFile = Tuple[str, str, bytes]

ATTACHMENT_COLUMNS = "id, name, content_type, size, storage_path, uploader_id, message_id, position, created_at"


def upload_root() -> Path:
    return Path(resolve_path(settings.upload_dir))


def file_url(attachment_id: str) -> str:
    return f"{settings.public_base_url.rstrip('/')}/api/v1/files/{attachment_id}"


def attachment_from_row(row: sqlite3.Row) -> AttachmentRead:
    url = file_url(row["id"])
    # Thumbnail rendering is left to the file host; images point at themselves.
    thumbnail = url if row["content_type"].startswith("image/") else None
    return AttachmentRead(
        id=row["id"],
        name=row["name"],
        type=row["content_type"],
        size=row["size"],
        url=url,
        thumbnail=thumbnail,
    )


def claim_attachments(
    cursor: sqlite3.Cursor,
    attachment_ids: Sequence[str],
    message_id: str,
    uploader_id: str,
) -> List[AttachmentRead]:
    """Bind uploaded attachments to ``message_id`` inside the caller's transaction.

    Every id must name an attachment uploaded by ``uploader_id`` that
    is not yet bound to a message.  The returned list follows the order
    of ``attachment_ids``.

    Raises
    ------
    AttachmentNotFoundError
        If an id is unknown, belongs to someone else, is already bound
        or is listed twice.
    """
    if len(set(attachment_ids)) != len(attachment_ids):
        raise AttachmentNotFoundError("Attachment listed more than once")
    claimed: List[AttachmentRead] = []
    for position, attachment_id in enumerate(attachment_ids):
        row = cursor.execute(
            f"SELECT {ATTACHMENT_COLUMNS} FROM support_attachments WHERE id = ?",
            (attachment_id,),
        ).fetchone()
        if not row or row["uploader_id"] != uploader_id or row["message_id"] is not None:
            raise AttachmentNotFoundError(f"Attachment {attachment_id} not found")
        cursor.execute(
            "UPDATE support_attachments SET message_id = ?, position = ? WHERE id = ?",
            (message_id, position, attachment_id),
        )
        claimed.append(attachment_from_row(row))
    return claimed


def attachments_for_messages(
    cursor: sqlite3.Cursor, message_ids: Iterable[str]
) -> Dict[str, List[AttachmentRead]]:
    """Attachments of each message, in submission order."""
    ids = list(message_ids)
    result: Dict[str, List[AttachmentRead]] = {message_id: [] for message_id in ids}
    if not ids:
        return result
    placeholders = ",".join("?" for _ in ids)
    rows = cursor.execute(
        f"""
        SELECT {ATTACHMENT_COLUMNS} FROM support_attachments
        WHERE message_id IN ({placeholders})
        ORDER BY message_id, position
        """,
        tuple(ids),
    ).fetchall()
    for row in rows:
        result[row["message_id"]].append(attachment_from_row(row))
    return result


class FileService:
    """Service for storing and serving attachments."""

    @classmethod
    async def upload_files(cls, files: Sequence[IncomingFile], current_user: dict) -> List[AttachmentRead]:
        """Store a batch of files and return one reference per file, in order.

        Parameters
        ----------
        files : Sequence[IncomingFile]
            ``(filename, content_type, data)`` tuples.  An empty batch
            returns an empty list.
        current_user : dict
            Authentication payload; the uploader owns the stored files
            until a message claims them.

        Raises
        ------
        UploadRejectedError
            If the batch has too many files or an empty file.
        UploadTooLargeError
            If a file exceeds ``settings.max_upload_bytes``.
        """
        if len(files) > settings.max_files_per_upload:
            raise UploadRejectedError(
                f"At most {settings.max_files_per_upload} files can be uploaded at once"
            )
        for name, _content_type, data in files:
            if not data:
                raise UploadRejectedError(f"File {name!r} is empty")
            if len(data) > settings.max_upload_bytes:
                raise UploadTooLargeError(f"File {name!r} exceeds {settings.max_upload_bytes} bytes")
        if not files:
            return []

        root = upload_root()
        root.mkdir(parents=True, exist_ok=True)
        written: List[Path] = []
        rows: List[tuple] = []
        conn = get_connection()
        try:
            now = utcnow()
            for name, content_type, data in files:
                attachment_id = new_id()
                path = root / attachment_id
                path.write_bytes(data)
                written.append(path)
                rows.append(
                    (
                        attachment_id,
                        os.path.basename(name or "") or attachment_id,
                        content_type or "application/octet-stream",
                        len(data),
                        attachment_id,
                        current_user.get("user_id"),
                        now,
                    )
                )
            conn.executemany(
                """
                INSERT INTO support_attachments (id, name, content_type, size, storage_path, uploader_id, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                rows,
            )
            conn.commit()
        except Exception as e:
            conn.rollback()
            for path in written:
                path.unlink(missing_ok=True)
            logger.error("Upload of %s files by %s failed: %s", len(files), current_user.get("user_id"), e)
            raise
        finally:
            conn.close()

        logger.info("User %s uploaded %s files", current_user.get("user_id"), len(rows))
        await AuditService.record(
            user_id=current_user.get("user_id"),
            action="upload",
            object_type="support_attachment",
            details={"ids": [row[0] for row in rows]},
        )
        return [
            AttachmentRead(
                id=row[0],
                name=row[1],
                type=row[2],
                size=row[3],
                url=file_url(row[0]),
                thumbnail=file_url(row[0]) if row[2].startswith("image/") else None,
            )
            for row in rows
        ]

    @classmethod
    async def get_for_download(cls, attachment_id: str, current_user: dict) -> Tuple[Path, str, str]:
        """Return ``(path, filename, content_type)`` of an attachment the caller may read.

        The uploader may always read it; once bound to a message anyone
        who can see the owning ticket may read it.
        """
        conn = get_connection()
        try:
            row = conn.execute(
                """
                SELECT a.name, a.content_type, a.storage_path, a.uploader_id, t.customer_id
                FROM support_attachments a
                LEFT JOIN support_messages m ON m.id = a.message_id
                LEFT JOIN support_tickets t ON t.id = m.ticket_id
                WHERE a.id = ?
                """,
                (attachment_id,),
            ).fetchone()
        finally:
            conn.close()
        if not row:
            raise AttachmentNotFoundError(f"Attachment {attachment_id} not found")
        allowed = (
            row["uploader_id"] == current_user.get("user_id")
            or (row["customer_id"] is not None and current_user.get("role") == "staff")
            or (row["customer_id"] is not None and row["customer_id"] == current_user.get("customer_id"))
        )
        if not allowed:
            raise AccessDeniedError("Not authorized to read this attachment")
        path = upload_root() / row["storage_path"]
        if not path.exists():
            raise AttachmentNotFoundError(f"Attachment {attachment_id} content is missing")
        return path, row["name"], row["content_type"]

    @classmethod
    async def list_orphans(cls, older_than: Optional[str] = None) -> List[dict]:
        """Uploads never bound to a message, optionally only those created before ``older_than``."""
        conn = get_connection()
        try:
            query = f"SELECT {ATTACHMENT_COLUMNS} FROM support_attachments WHERE message_id IS NULL"
            params: tuple = ()
            if older_than:
                query += " AND created_at < ?"
                params = (older_than,)
            rows = conn.execute(query + " ORDER BY created_at", params).fetchall()
        finally:
            conn.close()
        return [
            {
                "id": row["id"],
                "name": row["name"],
                "size": row["size"],
                "uploader_id": row["uploader_id"],
                "created_at": row["created_at"],
            }
            for row in rows
        ]
