"""
Shiftwise backend.

Workflow automation for a workforce-management product: a rule engine that
reacts to job, shift, payment and schedule events, plus the FastAPI host
application and SQL-backed collaborators around it.
"""
