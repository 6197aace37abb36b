"""
Versioned HTTP routes.

Each version subpackage exposes a top-level ``router`` that includes
its resource routers.
"""
