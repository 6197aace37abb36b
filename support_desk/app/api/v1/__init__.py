"""
Version 1 of the Support Desk API.

Breaking changes to ticket, message or attachment payloads belong in a
new version subpackage.
"""
