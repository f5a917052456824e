"""
Tests for the FastAPI routes (sightings, sync endpoint, uploads).
"""

from datetime import timedelta
from functools import partial
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from conftest import FakeFeedSession, padlet_record, sighting
from sightmap.database import get_db
from sightmap.errors import UploadError
from sightmap.feed import PadletFeed
from sightmap.main import app, get_feed
from sightmap.models import Sighting
from sightmap.sync import SyncJob
from sightmap.timeutil import utcnow


@pytest.fixture
def feed_session():
    return FakeFeedSession([[]])


@pytest.fixture
def client(db, feed_session):
    def _db():
        yield db

    app.dependency_overrides[get_db] = _db
    app.dependency_overrides[get_feed] = lambda: PadletFeed(session=feed_session)
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


class TestSightingRoutes:

    def test_root(self, client):
        r = client.get("/")
        assert r.status_code == 200
        assert r.json()["message"] == "Sighting Map API"

    @patch("sightmap.main.location_from_coords", return_value="Harlem")
    def test_create_geocodes_blank_location(self, mock_geo, client):
        r = client.post("/api/sightings", json={"lat": 40.8, "lng": -73.9, "description": "van"})
        assert r.status_code == 201
        body = r.json()
        assert body["location"] == "Harlem"
        assert body["marker"] == "red"
        assert body["icon"] == "/redHat.png"
        mock_geo.assert_called_once_with(40.8, -73.9)

    @patch("sightmap.main.location_from_coords")
    def test_create_keeps_given_location(self, mock_geo, client):
        r = client.post("/api/sightings", json={"lat": 40.8, "lng": -73.9, "location": "Deli on 5th"})
        assert r.status_code == 201
        assert r.json()["location"] == "Deli on 5th"
        mock_geo.assert_not_called()

    @pytest.mark.parametrize("offset,marker", [("now", "red"), ("1-8", "yellow"), ("8+", "black")])
    def test_create_backdates(self, client, offset, marker):
        r = client.post(
            "/api/sightings",
            json={"lat": 1.0, "lng": 2.0, "location": "x", "timeDate": offset},
        )
        assert r.status_code == 201
        assert r.json()["marker"] == marker

    def test_create_rejects_bad_offset(self, client):
        r = client.post("/api/sightings", json={"lat": 1.0, "lng": 2.0, "time_offset": "yesterday"})
        assert r.status_code == 422

    def test_create_rejects_out_of_range_lat(self, client):
        r = client.post("/api/sightings", json={"lat": 123.0, "lng": 2.0})
        assert r.status_code == 422

    def test_get_detail_and_404(self, client, store):
        row = store.insert_one(sighting(time_date=utcnow(), description="detail"))
        r = client.get(f"/api/sightings/{row.id}")
        assert r.status_code == 200
        assert r.json()["description"] == "detail"
        assert client.get("/api/sightings/99999").status_code == 404

    def test_list_with_marker_filter(self, client, store):
        now = utcnow()
        store.insert_one(sighting(lat=1.0, time_date=now - timedelta(hours=1)))
        store.insert_one(sighting(lat=2.0, time_date=now - timedelta(hours=5)))
        store.insert_one(sighting(lat=3.0, time_date=now - timedelta(hours=20)))

        all_rows = client.get("/api/sightings").json()
        assert [s["marker"] for s in all_rows] == ["red", "yellow", "black"]

        some = client.get("/api/sightings", params={"markers": "red,black"}).json()
        assert [s["lat"] for s in some] == [1.0, 3.0]

    def test_list_unknown_marker(self, client):
        assert client.get("/api/sightings", params={"markers": "green"}).status_code == 400

    def test_legend(self, client):
        assert [e["id"] for e in client.get("/api/legend").json()] == ["red", "yellow", "black"]


class TestSyncRoute:

    def test_unauthorized(self, client, feed_session, store, db):
        store.insert_one(sighting(time_date=utcnow() - timedelta(days=5)))

        r = client.get("/api/sync-padlet", headers={"Authorization": "Bearer wrong"})

        assert r.status_code == 401
        assert r.json() == {"success": False, "error": "Unauthorized"}
        assert feed_session.calls == []
        assert db.query(Sighting).count() == 1

    def test_success_summary(self, client, feed_session, db):
        now = utcnow()
        feed_session.responses[None].json.return_value = {
            "data": [
                padlet_record(1, 1.0, 2.0, now - timedelta(hours=1)),
                padlet_record(2, 1.0, 2.0, now - timedelta(hours=1) + timedelta(seconds=10)),
                padlet_record(3, 3.0, 4.0, now - timedelta(days=4)),
            ],
            "meta": {},
        }

        r = client.get("/api/sync-padlet", headers={"Authorization": "Bearer 123"})

        assert r.status_code == 200
        body = r.json()
        assert body["success"] is True
        assert body["fetched"] == 3
        assert body["kept"] == 2
        assert body["inserted"] == 1
        assert body["duplicates"] == 1
        assert body["message"].startswith("Synced 1 new sightings in ")
        assert db.query(Sighting).count() == 1

    def test_fetch_failure_reports_error(self, client, feed_session):
        feed_session.responses[None].ok = False
        feed_session.responses[None].status_code = 500

        r = client.post("/api/sync-padlet", headers={"Authorization": "Bearer 123"})

        assert r.status_code == 500
        body = r.json()
        assert body["success"] is False
        assert body["error"] == "Failed to sync data"
        assert "500" in body["details"]

    def test_bad_retention_mode_reports_error(self, client):
        with patch("sightmap.main.SyncJob", partial(SyncJob, retention_mode="purge")):
            r = client.get("/api/sync-padlet", headers={"Authorization": "Bearer 123"})

        assert r.status_code == 500
        assert r.json()["success"] is False
        assert "purge" in r.json()["details"]


class TestFeedDependency:

    def test_session_closed_after_request(self):
        with patch("sightmap.main.PadletFeed") as feed_cls:
            gen = get_feed()
            feed = next(gen)
            feed.close.assert_not_called()
            with pytest.raises(StopIteration):
                next(gen)

        assert feed is feed_cls.return_value
        feed.close.assert_called_once_with()

    def test_session_closed_when_route_fails(self):
        with patch("sightmap.main.PadletFeed") as feed_cls:
            gen = get_feed()
            next(gen)
            with pytest.raises(RuntimeError):
                gen.throw(RuntimeError("boom"))

        feed_cls.return_value.close.assert_called_once_with()


class TestUploadRoutes:

    @patch("sightmap.main.upload_to_imgur", return_value="https://i.imgur.com/a.png")
    def test_imgur(self, mock_up, client):
        r = client.post("/api/imgur/upload", json={"base64Data": "data:image/png;base64,QUJD"})
        assert r.status_code == 200
        assert r.json() == {"imageUrl": "https://i.imgur.com/a.png"}

    def test_imgur_missing_data(self, client):
        assert client.post("/api/imgur/upload", json={}).status_code == 400

    @patch("sightmap.main.upload_to_imgur", side_effect=UploadError("Imgur down"))
    def test_imgur_failure(self, mock_up, client):
        r = client.post("/api/imgur/upload", json={"base64Data": "QUJD"})
        assert r.status_code == 500
        assert r.json()["detail"] == "Imgur down"

    @patch("sightmap.main.upload_to_mega", return_value={"fileUrl": "u", "fileId": "i", "fileKey": "k"})
    def test_mega(self, mock_up, client):
        r = client.post("/api/mega/upload", json={
            "filename": "a.jpg",
            "base64Data": "QUJD",
            "credentials": {"email": "a@b.c", "password": "pw"},
        })
        assert r.status_code == 200
        assert r.json()["fileId"] == "i"
        mock_up.assert_called_once_with("a.jpg", "QUJD", "a@b.c", "pw")

    def test_mega_missing_credentials(self, client):
        r = client.post("/api/mega/upload", json={"filename": "a.jpg", "base64Data": "QUJD"})
        assert r.status_code == 400
        assert r.json()["detail"] == "Missing Mega credentials"

    @patch("sightmap.uploads.sys")
    def test_mega_unsupported_python(self, mock_sys, client):
        mock_sys.version_info = (3, 12, 0)
        r = client.post("/api/mega/upload", json={
            "filename": "a.jpg",
            "base64Data": "QUJD",
            "credentials": {"email": "a@b.c", "password": "pw"},
        })
        assert r.status_code == 500
        assert "Python < 3.11" in r.json()["detail"]
