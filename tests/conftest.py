import os

# Must be set before sightmap.database is imported.
for _k in ("DB_USER", "DB_PASSWORD", "DB_HOST", "DB_NAME"):
    os.environ.pop(_k, None)
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SYNC_TOKEN"] = "123"
os.environ["RETENTION_MODE"] = "archive"

from datetime import datetime, timezone
from unittest.mock import Mock

import pytest
from sqlalchemy.orm import sessionmaker

from sightmap.database import Base, make_engine
from sightmap.store import SightingStore

NOW = datetime(2026, 10, 18, 12, 0, 0, tzinfo=timezone.utc)


def iso(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def padlet_record(rec_id, lat, lng, created_at, **attrs):
    """A Padlet wish as the wall API returns it."""
    base = {
        "body": "two vans",
        "location_name": "Main St",
        "location_point": {"latitude": lat, "longitude": lng},
        "created_at": iso(created_at) if isinstance(created_at, datetime) else created_at,
        "attachment": "https://example.com/a.jpg",
        "custom_properties": {
            "Fvkpy4pI": "3",
            "4LxsfXZo": "checkpoint",
            "h36hJnEo": "vests",
            "nnVFYm1Q": "radios",
        },
    }
    base.update(attrs)
    return {"id": rec_id, "attributes": base}


def page_response(data, next_token=None, status=200):
    r = Mock()
    r.ok = 200 <= status < 300
    r.status_code = status
    r.reason = "OK" if r.ok else "Error"
    r.json.return_value = {"data": data, "meta": {"next": next_token} if next_token else {}}
    return r


class FakeFeedSession:
    """requests.Session stand-in serving pages keyed by page_start."""

    def __init__(self, pages):
        # pages: list of record lists; page i links to token "p{i+1}"
        self.responses = {}
        for i, data in enumerate(pages):
            token = None if i == 0 else f"p{i}"
            nxt = f"p{i + 1}" if i + 1 < len(pages) else None
            self.responses[token] = page_response(data, nxt)
        self.calls = []

    def get(self, url, params=None, headers=None, timeout=None):
        self.calls.append(dict(params or {}))
        return self.responses[(params or {}).get("page_start")]


@pytest.fixture
def engine():
    eng = make_engine("sqlite://")
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    yield session
    session.close()


@pytest.fixture
def store(db):
    return SightingStore(db)


def sighting(lat=40.7, lng=-74.0, time_date=NOW, **extra):
    data = {"lat": lat, "lng": lng, "time_date": time_date, "description": "", "location": ""}
    data.update(extra)
    return data
