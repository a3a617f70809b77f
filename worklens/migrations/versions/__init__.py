"""
Migration versions directory

Each migration file is named XXXX_description.py, where XXXX is a 4-digit
version number (0001_initial_schema.py, 0002_add_dead_letters.py, ...)
"""
