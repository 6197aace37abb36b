"""
Business logic for accounts and customers.

Accounts are either staff members or customer persons.  A customer
person always belongs to one customer organisation and can only see
that customer's tickets.  Staff accounts populate the assignment
picker through :meth:`AccountService.list_staff`.
"""

import logging
import sqlite3
from typing import List, Optional

from support_desk.app.core.db import get_connection, new_id, utcnow
from support_desk.app.core.security import hash_password, verify_password
from support_desk.app.schemas.ticket import CustomerRef
from support_desk.app.schemas.user import PersonRef, UserRead
from support_desk.lifecycle import Role

from .errors import CustomerNotFoundError, DuplicateAccountError

logger = logging.getLogger(__name__)


def _user_from_row(row: sqlite3.Row) -> UserRead:
    return UserRead(
        id=row["id"],
        email=row["email"],
        first_name=row["first_name"],
        last_name=row["last_name"],
        role=row["role"],
        customer_id=row["customer_id"],
    )


class AccountService:
    """Service for staff accounts, customer persons and customers."""

    @classmethod
    async def create_customer(
        cls,
        title: str,
        code: int,
        type: str = "PERSONAL",
        category: str = "OTHER",
    ) -> CustomerRef:
        """Create a customer organisation.  ``code`` must be unique."""
        conn = get_connection()
        try:
            customer_id = new_id()
            conn.execute(
                "INSERT INTO customers (id, title, code, type, category, created_at) VALUES (?, ?, ?, ?, ?, ?)",
                (customer_id, title, code, type.upper(), category.upper(), utcnow()),
            )
            conn.commit()
        except sqlite3.IntegrityError:
            conn.rollback()
            raise DuplicateAccountError(f"Customer code {code} already exists")
        finally:
            conn.close()
        logger.info("Created customer %s (%s)", customer_id, title)
        return CustomerRef(id=customer_id, title=title, code=code, type=type.upper(), category=category.upper())

    @classmethod
    async def create_user(
        cls,
        email: str,
        role: Role,
        password: Optional[str] = None,
        first_name: str = "",
        last_name: str = "",
        customer_id: Optional[str] = None,
    ) -> UserRead:
        """Create a staff or customer account.

        Customer persons must reference an existing customer; staff
        accounts never reference one.

        Raises
        ------
        CustomerNotFoundError
            If a customer person names an unknown customer.
        DuplicateAccountError
            If the e-mail is already registered.
        """
        role = Role(role)
        if role is Role.STAFF:
            customer_id = None
        conn = get_connection()
        try:
            if role is Role.CUSTOMER:
                found = conn.execute("SELECT id FROM customers WHERE id = ?", (customer_id,)).fetchone()
                if not found:
                    raise CustomerNotFoundError(f"Customer {customer_id} not found")
            user_id = new_id()
            now = utcnow()
            conn.execute(
                """
                INSERT INTO users (id, email, first_name, last_name, password, role, customer_id, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    user_id,
                    email,
                    first_name,
                    last_name,
                    hash_password(password) if password else None,
                    role.value,
                    customer_id,
                    now,
                    now,
                ),
            )
            conn.commit()
        except sqlite3.IntegrityError:
            conn.rollback()
            raise DuplicateAccountError(f"Account {email} already exists")
        finally:
            conn.close()
        logger.info("Created %s account %s", role.value, email)
        return UserRead(
            id=user_id,
            email=email,
            first_name=first_name,
            last_name=last_name,
            role=role.value,
            customer_id=customer_id,
        )

    @classmethod
    async def authenticate(cls, email: str, password: str) -> Optional[UserRead]:
        """Return the account if the credentials match and it is enabled."""
        conn = get_connection()
        try:
            row = conn.execute(
                "SELECT id, email, first_name, last_name, password, role, customer_id, disabled FROM users WHERE email = ?",
                (email,),
            ).fetchone()
        finally:
            conn.close()
        if not row or row["disabled"] or not verify_password(password, row["password"]):
            logger.warning("Failed login for %s", email)
            return None
        return _user_from_row(row)

    @classmethod
    async def get_user(cls, user_id: str) -> Optional[UserRead]:
        conn = get_connection()
        try:
            row = conn.execute(
                "SELECT id, email, first_name, last_name, role, customer_id FROM users WHERE id = ?",
                (user_id,),
            ).fetchone()
        finally:
            conn.close()
        return _user_from_row(row) if row else None

    @classmethod
    async def set_password(cls, email: str, password: str) -> bool:
        """Replace an account's password.  Returns ``False`` if no such account."""
        conn = get_connection()
        try:
            cursor = conn.execute(
                "UPDATE users SET password = ?, updated_at = ? WHERE email = ?",
                (hash_password(password), utcnow(), email),
            )
            conn.commit()
            return cursor.rowcount > 0
        finally:
            conn.close()

    @classmethod
    async def list_staff(cls) -> List[PersonRef]:
        """Active staff members, ordered by name, for the assignment picker."""
        conn = get_connection()
        try:
            rows = conn.execute(
                """
                SELECT id, first_name, last_name FROM users
                WHERE role = 'staff' AND disabled = 0
                ORDER BY first_name, last_name, email
                """
            ).fetchall()
        finally:
            conn.close()
        return [PersonRef(id=row["id"], first_name=row["first_name"], last_name=row["last_name"]) for row in rows]
