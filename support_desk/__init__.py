"""
Top-level package for the Support Desk.

``support_desk.app`` holds the FastAPI service that owns tickets,
messages and attachments.  ``support_desk.client`` and
``support_desk.console`` hold the participant side: an HTTP client and
the conversation workflow used by the staff and customer consoles.
``support_desk.lifecycle`` is shared by both.

The package provides no public exports; import the submodules.
"""

__all__ = []
