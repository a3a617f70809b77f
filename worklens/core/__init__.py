"""
Core module - logging, domain models, per-user state, task queue and coordinator
"""
