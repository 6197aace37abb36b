"""
Participant side of the support desk: client models, the conversation
workflow and the ``support-console`` command line front end.
"""
