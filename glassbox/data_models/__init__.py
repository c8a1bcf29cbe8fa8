"""
glassbox/data_models/__init__.py

Pydantic models for captured events, validation results and tool results.
"""
