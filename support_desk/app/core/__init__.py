"""Configuration, persistence, logging and authentication helpers."""
