"""
Pydantic schemas for workflow rules, execution records and API payloads.
"""
