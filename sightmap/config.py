import os
from dotenv import load_dotenv

load_dotenv()

# Shared secret for the sync endpoint (sent as "Authorization: Bearer <token>")
SYNC_TOKEN = os.getenv("SYNC_TOKEN", "123")

# Retention / batching
DAYS_TO_KEEP = int(os.getenv("DAYS_TO_KEEP", "3"))
BATCH_SIZE = int(os.getenv("BATCH_SIZE", "25"))
DEDUP_WINDOW_SECONDS = 60
RETENTION_MODE = os.getenv("RETENTION_MODE", "archive").strip().lower()  # 'archive' | 'delete'

# Padlet feed
PADLET_BASE_URL = os.getenv("PADLET_BASE_URL", "https://padlet.com/api/10/wishes")
PADLET_WALL_ID = os.getenv("PADLET_WALL_ID", "board_YjMXnWQK1VbayND5")
FETCH_TIMEOUT = float(os.getenv("FETCH_TIMEOUT", "10"))
FEED_MAX_PAGES = int(os.getenv("FEED_MAX_PAGES", "50"))
FEED_MAX_SECONDS = float(os.getenv("FEED_MAX_SECONDS", "60"))

# Outbound services
IMGUR_CLIENT_ID = os.getenv("IMGUR_CLIENT_ID", "")
GEOCODER_USER_AGENT = os.getenv("GEOCODER_USER_AGENT", "ICE-Site/1.0")

CORS_ORIGINS = [
    o.strip()
    for o in os.getenv("CORS_ORIGINS", "http://localhost:3000,http://localhost:5173").split(",")
    if o.strip()
]
