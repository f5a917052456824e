import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .errors import StoreError
from .models import ArchivedSighting, Sighting, SIGHTING_FIELDS
from .timeutil import as_utc, time_window

logger = logging.getLogger(__name__)


class SightingStore:
    """Table operations on the sightings table over one SQLAlchemy session.

    Every method either commits its own work or rolls back and raises
    StoreError, so a failed write leaves the session usable for the next call.
    """

    def __init__(self, db: Session):
        self.db = db

    def _fail(self, op: str, exc: SQLAlchemyError) -> StoreError:
        self.db.rollback()
        return StoreError(f"{op} failed: {exc}")

    @staticmethod
    def _row(data: Dict[str, Any]) -> Sighting:
        values = {k: data.get(k) for k in SIGHTING_FIELDS if k in data}
        values["time_date"] = as_utc(values["time_date"])
        return Sighting(**values)

    def insert_one(self, data: Dict[str, Any]) -> Sighting:
        row = self._row(data)
        try:
            self.db.add(row)
            self.db.commit()
            self.db.refresh(row)
        except SQLAlchemyError as e:
            raise self._fail("insert", e) from e
        return row

    def insert_many(self, items: Iterable[Dict[str, Any]]) -> int:
        rows = [self._row(item) for item in items]
        if not rows:
            return 0
        try:
            self.db.add_all(rows)
            self.db.commit()
        except SQLAlchemyError as e:
            raise self._fail("bulk insert", e) from e
        return len(rows)

    def find_duplicate(self, lat: float, lng: float, time_date: datetime, window_s: int) -> Optional[int]:
        """Return the id of a stored sighting at exactly (lat, lng) within +/- window_s seconds, if any."""
        lo, hi = time_window(as_utc(time_date), window_s)
        try:
            row = (
                self.db.query(Sighting.id)
                .filter(
                    Sighting.lat == lat,
                    Sighting.lng == lng,
                    Sighting.time_date >= lo,
                    Sighting.time_date <= hi,
                )
                .first()
            )
        except SQLAlchemyError as e:
            raise self._fail("duplicate lookup", e) from e
        return row[0] if row else None

    def get(self, sighting_id: int) -> Optional[Sighting]:
        try:
            return self.db.query(Sighting).filter(Sighting.id == sighting_id).first()
        except SQLAlchemyError as e:
            raise self._fail("get", e) from e

    def list_recent(self, since: Optional[datetime] = None) -> List[Sighting]:
        try:
            q = self.db.query(Sighting)
            if since is not None:
                q = q.filter(Sighting.time_date >= as_utc(since))
            return q.order_by(Sighting.time_date.desc()).all()
        except SQLAlchemyError as e:
            raise self._fail("list", e) from e

    def delete_older_than(self, cutoff: datetime) -> int:
        try:
            n = (
                self.db.query(Sighting)
                .filter(Sighting.time_date < as_utc(cutoff))
                .delete(synchronize_session=False)
            )
            self.db.commit()
        except SQLAlchemyError as e:
            raise self._fail("delete", e) from e
        return n

    def archive_older_than(self, cutoff: datetime) -> int:
        """Move sightings older than cutoff into archived_sightings (one transaction)."""
        try:
            rows = self.db.query(Sighting).filter(Sighting.time_date < as_utc(cutoff)).all()
            for r in rows:
                archived = ArchivedSighting(original_id=r.id, created_at=r.created_at)
                for k in SIGHTING_FIELDS:
                    setattr(archived, k, getattr(r, k))
                self.db.add(archived)
                self.db.delete(r)
            self.db.commit()
        except SQLAlchemyError as e:
            raise self._fail("archive", e) from e
        return len(rows)

    def count(self) -> int:
        try:
            return self.db.query(Sighting).count()
        except SQLAlchemyError as e:
            raise self._fail("count", e) from e
