"""
Pydantic schema definitions for API payloads.

Schemas are separated from the database layer so the wire
representation of tickets, messages and attachments can evolve
independently of the tables behind them.
"""
