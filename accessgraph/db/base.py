"""Declarative base and engine helpers for the SQL role graph store."""

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

Base = declarative_base()


def create_session_factory(database_url: str, create_tables: bool = False, **engine_kwargs) -> sessionmaker:
    """Build a session factory for ``database_url``, optionally creating the tables."""
    engine = create_engine(database_url, **engine_kwargs)
    if create_tables:
        # Import models so they are registered on Base.metadata
        import accessgraph.db.models  # noqa: F401
        Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, expire_on_commit=False)
