from fastapi import FastAPI, HTTPException, Depends, Query, Header
import logging
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, AliasChoices
from typing import List, Optional, Dict, Any, Literal
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from . import config
from .database import Base, engine, get_db
from .errors import UnauthorizedError, StoreError, UploadError
from .feed import PadletFeed
from .geocoding import location_from_coords
from .markers import MARKER_IDS, icon_for, legend, marker_for
from .models import Sighting as SightingModel
from .store import SightingStore
from .sync import SyncJob
from .timeutil import utcnow
from .uploads import upload_to_imgur, upload_to_mega

# Create tables if they don't exist (simple start; migrations recommended later)
Base.metadata.create_all(bind=engine)

app = FastAPI(title="Sighting Map API")
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("sightmap-api")

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Backdating choices offered by the report form
TIME_OFFSETS = {
    "now": timedelta(0),
    "1-8": timedelta(hours=4),
    "8+": timedelta(hours=9),
}

# Pydantic models for request/response
class SightingCreate(BaseModel):
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)
    description: str = ""
    size: str = ""
    activity: str = ""
    location: str = ""
    uniform: str = ""
    equipment: str = ""
    # Accept both snake_case and camelCase
    image_url: Optional[str] = Field(default=None, validation_alias=AliasChoices("image_url", "imageUrl"))
    time_offset: Literal["now", "1-8", "8+"] = Field(
        default="now", validation_alias=AliasChoices("time_offset", "timeDate")
    )

class SightingResponse(BaseModel):
    id: int
    lat: float
    lng: float
    description: str
    size: str
    activity: str
    location: str
    uniform: str
    equipment: str
    time_date: datetime
    image_url: Optional[str] = None
    marker: str
    icon: str

class ImgurUploadRequest(BaseModel):
    base64Data: Optional[str] = None

class MegaCredentials(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None

class MegaUploadRequest(BaseModel):
    filename: Optional[str] = None
    base64Data: Optional[str] = None
    credentials: Optional[MegaCredentials] = None


def get_store(db: Session = Depends(get_db)) -> SightingStore:
    return SightingStore(db)

def get_feed():
    feed = PadletFeed()
    try:
        yield feed
    finally:
        feed.close()

def _to_response(row: SightingModel, now: datetime) -> SightingResponse:
    marker = marker_for(row.time_date, now)
    return SightingResponse(
        id=row.id,
        lat=row.lat,
        lng=row.lng,
        description=row.description or "",
        size=row.size or "",
        activity=row.activity or "",
        location=row.location or "",
        uniform=row.uniform or "",
        equipment=row.equipment or "",
        time_date=row.time_date,
        image_url=row.image_url or None,
        marker=marker,
        icon=icon_for(marker),
    )

@app.get("/")
def read_root():
    return {"message": "Sighting Map API", "version": "1.0.0"}

@app.get("/api/legend")
def get_legend():
    return legend()

@app.get("/api/sightings", response_model=List[SightingResponse])
def get_sightings(
    markers: Optional[str] = Query(None, description="Comma separated marker ids, e.g. red,yellow"),
    store: SightingStore = Depends(get_store),
):
    wanted = None
    if markers:
        wanted = {m.strip() for m in markers.split(",") if m.strip()}
        unknown = wanted.difference(MARKER_IDS)
        if unknown:
            raise HTTPException(status_code=400, detail=f"Unknown marker ids: {', '.join(sorted(unknown))}")
    now = utcnow()
    try:
        rows = store.list_recent(since=now - timedelta(days=config.DAYS_TO_KEEP))
    except StoreError as e:
        logger.error("Listing sightings failed: %s", e)
        raise HTTPException(status_code=500, detail="Failed to load sightings")
    out = [_to_response(r, now) for r in rows]
    if wanted is not None:
        out = [s for s in out if s.marker in wanted]
    return out

@app.post("/api/sightings", response_model=SightingResponse, status_code=201)
def create_sighting(sighting: SightingCreate, store: SightingStore = Depends(get_store)):
    location = sighting.location.strip()
    if not location:
        location = location_from_coords(sighting.lat, sighting.lng)

    now = utcnow()
    data: Dict[str, Any] = {
        "lat": sighting.lat,
        "lng": sighting.lng,
        "description": sighting.description,
        "size": sighting.size,
        "activity": sighting.activity,
        "location": location,
        "uniform": sighting.uniform,
        "equipment": sighting.equipment,
        "image_url": sighting.image_url,
        "time_date": now - TIME_OFFSETS[sighting.time_offset],
    }
    try:
        row = store.insert_one(data)
    except StoreError as e:
        logger.error("Saving sighting failed: %s", e)
        raise HTTPException(status_code=500, detail="Failed to save sighting")
    logger.info("Saved sighting id=%s lat=%s lng=%s location=%s", row.id, row.lat, row.lng, row.location)
    return _to_response(row, now)

@app.get("/api/sightings/{sighting_id}", response_model=SightingResponse)
def get_sighting(sighting_id: int, store: SightingStore = Depends(get_store)):
    try:
        row = store.get(sighting_id)
    except StoreError as e:
        logger.error("Fetching sighting %s failed: %s", sighting_id, e)
        raise HTTPException(status_code=500, detail="Failed to load sighting")
    if not row:
        raise HTTPException(status_code=404, detail="Sighting not found")
    return _to_response(row, utcnow())

@app.api_route("/api/sync-padlet", methods=["GET", "POST"])
def sync_padlet(
    authorization: Optional[str] = Header(None),
    store: SightingStore = Depends(get_store),
    feed: PadletFeed = Depends(get_feed),
):
    try:
        job = SyncJob(store, feed)
        result = job.run(authorization)
    except UnauthorizedError:
        return JSONResponse({"success": False, "error": "Unauthorized"}, status_code=401)
    except Exception as e:
        # fetch, payload and transform failures abort the run
        logger.exception("Sync error")
        return JSONResponse(
            {"success": False, "error": "Failed to sync data", "details": str(e)},
            status_code=500,
        )
    return {
        "success": True,
        "message": result.message,
        "fetched": result.fetched,
        "kept": result.kept,
        "inserted": result.inserted,
        "duplicates": result.duplicates,
        "skipped": result.skipped,
        "failed_batches": result.failed_batches,
        "archived": result.archived,
        "deleted": result.deleted,
        "duration_s": result.duration_s,
    }

@app.post("/api/imgur/upload")
def imgur_upload(body: ImgurUploadRequest):
    if not body.base64Data:
        raise HTTPException(status_code=400, detail="Missing image data")
    try:
        image_url = upload_to_imgur(body.base64Data)
    except UploadError as e:
        logger.error("Error in Imgur upload route: %s", e)
        raise HTTPException(status_code=500, detail=str(e))
    return {"imageUrl": image_url}

@app.post("/api/mega/upload")
def mega_upload(body: MegaUploadRequest):
    if not body.filename or not body.base64Data:
        raise HTTPException(status_code=400, detail="Missing required fields")
    creds = body.credentials
    if not creds or not creds.email or not creds.password:
        raise HTTPException(status_code=400, detail="Missing Mega credentials")
    try:
        return upload_to_mega(body.filename, body.base64Data, creds.email, creds.password)
    except UploadError as e:
        logger.error("Error in mega upload: %s", e)
        raise HTTPException(status_code=500, detail=str(e))

if __name__ == "__main__":
    import os
    import uvicorn
    port = int(os.getenv("PORT", 5000))
    uvicorn.run("sightmap.main:app", host="0.0.0.0", port=port, reload=True)
