"""
Service layer.

Each service encapsulates the business logic for one concern (tickets,
attachments, accounts, auditing) so the API handlers only translate
between HTTP and service calls.
"""
