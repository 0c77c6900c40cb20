import os
import uuid

import pytest
from dotenv import load_dotenv
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import app.models  # noqa: F401
from app.db import Base
from app.models.migration import MigrationSource
from app.services.migrations.adapters import SourceAdapter
from app.services.migrations.client import build_page
from app.services.migrations.mappers import map_record

load_dotenv(os.path.join(os.getcwd(), ".env"))


@pytest.fixture()
def engine():
    # migrations commit per record; one database per test
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture()
def db_session(engine):
    SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def org_id():
    return f"org-{uuid.uuid4().hex[:8]}"


# ============================================================================
# Fake provider
# ============================================================================

ID_FIELDS = {
    MigrationSource.jobnimbus: "jnid",
    MigrationSource.acculynx: "id",
}


class FakeProvider:
    """In-memory provider that pages raw payloads through the real mappers."""

    def __init__(self, source=MigrationSource.jobnimbus, items=None, page_size=2, failures=None):
        self.source = source
        self.items = {kind: list(values) for kind, values in (items or {}).items()}
        self.page_size = page_size
        self.failures = dict(failures or {})
        self.calls = []
        self.closed = False

    def fetch_page(self, kind, cursor):
        self.calls.append((kind, cursor))
        failure = self.failures.get(kind)
        if failure is not None:
            raise failure
        items = self.items.get(kind, [])
        start = int(cursor or 0)
        chunk = items[start : start + self.page_size]
        next_start = start + len(chunk)
        next_cursor = str(next_start) if chunk and next_start < len(items) else None
        return build_page(self.source, kind, chunk, ID_FIELDS[self.source], next_cursor)

    def close(self):
        self.closed = True

    def adapter(self):
        return SourceAdapter(
            source=self.source,
            fetch_page=self.fetch_page,
            map_record=map_record,
            close=self.close,
        )


@pytest.fixture()
def fake_provider():
    def _build(**kwargs):
        return FakeProvider(**kwargs)

    return _build


def jobnimbus_contact(jnid, first_name="Jane", last_name="Roofer", **extra):
    doc = {
        "jnid": jnid,
        "first_name": first_name,
        "last_name": last_name,
        "email": f"{jnid}@example.com",
        "home_phone": "(555) 010-0000",
        "date_created": 1700000000,
        "is_active": True,
    }
    doc.update(extra)
    return doc


def jobnimbus_job(jnid, contact_jnid=None, **extra):
    doc = {
        "jnid": jnid,
        "name": f"Roof replacement {jnid}",
        "status_name": "Open",
        "source_name": "Referral",
        "address_line1": "12 Elm Street",
        "city": "Springfield",
        "state_text": "IL",
        "zip": "62701",
        "country_name": "USA",
        "date_created": 1700000000,
        "is_active": True,
    }
    if contact_jnid:
        doc["primary"] = {"id": contact_jnid, "name": "Jane Roofer"}
    doc.update(extra)
    return doc


@pytest.fixture()
def jn_contact():
    return jobnimbus_contact


@pytest.fixture()
def jn_job():
    return jobnimbus_job
