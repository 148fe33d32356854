"""Ledger store: engine, sessions, ORM models and repositories."""
