# ============================================================================
# Evaluation Desk v1.0.0
# Database Module - SQLAlchemy Session Management
# ============================================================================

from app.database.session import get_db, get_engine, configure_engine, SessionLocal

__all__ = ["get_db", "get_engine", "configure_engine", "SessionLocal"]
