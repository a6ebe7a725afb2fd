"""Pytest configuration and shared fixtures."""

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from accessgraph.core.cache import ResolutionCache
from accessgraph.core.config import Settings
from accessgraph.core.rbac import PermissionService
from accessgraph.db.base import Base
from accessgraph.store import InMemoryRoleGraphStore

from tests.factories import TENANT, create_role


@pytest.fixture
def settings():
    """Settings isolated from the environment, with process-local counters."""
    return Settings(
        _env_file=None,
        cache_ttl_seconds=3600,
        flag_cache_ttl_seconds=300,
        resolve_timeout_seconds=2.0,
        max_concurrent_resolutions=4,
        redis_url=None,
        file_logging=False,
    )


@pytest.fixture
def store():
    """Tenant with agent <- manager, and alice holding manager."""
    return InMemoryRoleGraphStore(
        roles=[
            create_role("agent", permissions=["leads:read"]),
            create_role("manager", parents=["agent"], permissions=["leads:write"]),
        ],
        assignments={(TENANT, "alice"): ["manager"], (TENANT, "bob"): ["agent"]},
    )


@pytest.fixture
def cache():
    cache = ResolutionCache(ttl_seconds=3600, max_concurrent_computations=4)
    yield cache
    cache.close()


@pytest.fixture
def service(store, cache, settings):
    service = PermissionService(store, cache, settings=settings)
    yield service
    service.close()


@pytest.fixture
def sample_fixture_config():
    """Sample YAML fixture dictionary."""
    return {
        "flags": [
            {"name": "mobile_app", "enabled": True},
        ],
        "tenants": {
            "acme": {
                "roles": [
                    {"id": "agent", "permissions": ["leads:read"]},
                    {"id": "manager", "parents": ["agent"], "permissions": ["leads:write"]},
                ],
                "assignments": {"alice": ["manager"]},
                "flags": [
                    {"name": "ai_lead_scoring", "enabled": True, "rollout_percentage": 25},
                ],
            },
        },
    }


# ---------------------------------------------------------------------------
# Database fixtures (SQLite in-memory, shared across connections)
# ---------------------------------------------------------------------------


@pytest.fixture
def db_engine():
    import accessgraph.db.models  # noqa: F401

    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(bind=db_engine, expire_on_commit=False)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.rollback()
    session.close()
