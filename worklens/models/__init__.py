"""
Pydantic models for oracle outputs and operation results
"""
