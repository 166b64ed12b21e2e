"""
Storage layer for Shopping AI.

SQLite-backed key-value persistence for settings, templates and the ledger.
"""
