"""Database module for SQLite persistence.

Provides:
- Database connection management
- Schema initialization
- Repository functions for sessions, materials, quiz items and transcripts
"""

from livequiz.db.database import get_db, init_db

__all__ = ["get_db", "init_db"]
