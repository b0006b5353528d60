"""
Backend package for the quotes service.

This package provides a FastAPI application that authenticates requests with
Firebase ID tokens, manages Firebase Auth users for admins, and keeps each
user's quote documents in Postgres.
"""
