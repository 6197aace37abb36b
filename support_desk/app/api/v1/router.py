"""
Top-level router for version 1 of the API.

Aggregates the resource routers under a unified prefix.
"""

from fastapi import APIRouter

from .endpoints import auth, files, staff, tickets

router = APIRouter()

router.include_router(auth.router, prefix="/auth", tags=["auth"])
router.include_router(tickets.router, prefix="/tickets", tags=["tickets"])
router.include_router(files.router, prefix="/files", tags=["files"])
router.include_router(staff.router, prefix="/staff", tags=["staff"])
