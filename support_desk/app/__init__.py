"""
Application package for the Support Desk API.

``core`` holds configuration, database access, logging and
authentication; ``schemas`` the request and response models;
``services`` the business logic; ``api`` the versioned routers.
``support_desk.app.main:app`` is the ASGI application.
"""
