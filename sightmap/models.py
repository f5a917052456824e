from sqlalchemy import Column, Integer, Float, String, DateTime, Index
from sqlalchemy.sql import func
from .database import Base


class Sighting(Base):
    __tablename__ = "sightings"

    id = Column(Integer, primary_key=True, index=True)
    lat = Column(Float, nullable=False)
    lng = Column(Float, nullable=False)
    description = Column(String, nullable=False, default="")
    size = Column(String, nullable=False, default="")
    activity = Column(String, nullable=False, default="")
    uniform = Column(String, nullable=False, default="")
    equipment = Column(String, nullable=False, default="")
    location = Column(String, nullable=False, default="")
    time_date = Column(DateTime(timezone=True), nullable=False, index=True)
    image_url = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    # duplicate lookups hit (lat, lng, time_date)
    __table_args__ = (
        Index("ix_sightings_point_time", "lat", "lng", "time_date"),
    )


class ArchivedSighting(Base):
    __tablename__ = "archived_sightings"

    id = Column(Integer, primary_key=True, index=True)
    original_id = Column(Integer, nullable=False, index=True)
    lat = Column(Float, nullable=False)
    lng = Column(Float, nullable=False)
    description = Column(String, nullable=False, default="")
    size = Column(String, nullable=False, default="")
    activity = Column(String, nullable=False, default="")
    uniform = Column(String, nullable=False, default="")
    equipment = Column(String, nullable=False, default="")
    location = Column(String, nullable=False, default="")
    time_date = Column(DateTime(timezone=True), nullable=False)
    image_url = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=True)
    archived_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


# Columns copied verbatim from a live row into the archive.
SIGHTING_FIELDS = (
    "lat",
    "lng",
    "description",
    "size",
    "activity",
    "uniform",
    "equipment",
    "location",
    "time_date",
    "image_url",
)
