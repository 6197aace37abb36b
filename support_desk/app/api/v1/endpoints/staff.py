"""
Staff directory endpoint, used to populate the assignment picker.
"""

from typing import List

from fastapi import APIRouter, Depends

from support_desk.app.core.security import require_roles
from support_desk.app.schemas.user import PersonRef
from support_desk.app.services.account_service import AccountService

router = APIRouter()


@router.get("", response_model=List[PersonRef], summary="List staff members")
async def list_staff(current_user: dict = Depends(require_roles("staff"))) -> List[PersonRef]:
    """Active staff members ordered by name.  Staff only."""
    return await AccountService.list_staff()
