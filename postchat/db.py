"""Database setup and session utilities for SQLAlchemy.

This module centralizes engine/session initialization, metadata base, and helpers:
- Database: owns the engine and session factory built from a DATABASE_URL.
- Database.init_schema: ensures the pgvector extension exists and creates the
  posts, post_chunks and ai_chats tables.
- Database.session_scope: context-managed transactional scope used by repositories.
"""
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, text
from sqlalchemy.orm import Session, declarative_base, sessionmaker

Base = declarative_base()


class Database:
    """Engine plus session factory for one database URL."""

    def __init__(self, url: str):
        self.engine = create_engine(url, pool_pre_ping=True, future=True)
        # Repositories hand out plain records after commit, so keep loaded state.
        self.SessionLocal = sessionmaker(
            autocommit=False, autoflush=False, bind=self.engine, future=True, expire_on_commit=False
        )

    def init_schema(self) -> None:
        """Initialize database extensions and tables.

        Ensures pgvector extension is available and creates tables from SQLAlchemy
        metadata. This function is idempotent and safe to run multiple times.
        """
        with self.engine.connect() as conn:
            conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
            conn.commit()

        # Import models after Base is defined
        from postchat import models  # noqa: F401

        Base.metadata.create_all(bind=self.engine)

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        """Provide a transactional scope around a series of operations.

        Yields:
            Session: A SQLAlchemy session bound to the configured engine.

        Notes:
            - Commits on successful exit.
            - Rolls back and re-raises on exception.
            - Always closes the session at the end.
        """
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def dispose(self) -> None:
        self.engine.dispose()
