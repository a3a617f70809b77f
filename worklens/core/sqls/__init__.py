"""
SQL statements module
Provides centralized SQL statement management for better maintainability
"""

from . import schema

__all__ = ["schema"]
