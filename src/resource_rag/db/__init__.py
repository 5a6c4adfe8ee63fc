"""
Database Package

Provides SQLAlchemy async session management, model definitions and the
vector store gateway for PostgreSQL with pgvector.
"""

from .session import get_async_session, async_engine, AsyncSessionLocal, init_db
from .models import Base, Resource, Chunk
from .vector_store import VectorStore

__all__ = [
    "get_async_session",
    "async_engine",
    "AsyncSessionLocal",
    "init_db",
    "Base",
    "Resource",
    "Chunk",
    "VectorStore",
]
