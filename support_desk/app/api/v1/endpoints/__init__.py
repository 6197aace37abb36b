"""Routers for the individual API v1 resources."""
