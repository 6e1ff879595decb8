"""
Pydantic request and response schemas for Milestack.
"""
