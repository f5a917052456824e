import base64
import binascii
import logging
import os
import re
import sys
import tempfile
from typing import Dict, Tuple

import requests

from . import config
from .errors import UploadError

logger = logging.getLogger(__name__)

IMGUR_UPLOAD_URL = "https://api.imgur.com/3/image"
IMGUR_TIMEOUT_S = 30

RE_DATA_URL_PREFIX = re.compile(r"^data:image/(png|jpg|jpeg|gif);base64,")
# https://mega.nz/file/<id>#<key>  or legacy  https://mega.nz/#!<id>!<key>
RE_MEGA_LINK = re.compile(r"(?:file/([^#]+)#(.+)$)|(?:#!([^!]+)!(.+)$)")


def strip_data_url(base64_data: str) -> str:
    return RE_DATA_URL_PREFIX.sub("", base64_data)


def upload_to_imgur(base64_data: str, client_id: str = config.IMGUR_CLIENT_ID) -> str:
    """Upload a base64 image to Imgur and return the direct link."""
    if not client_id:
        raise UploadError("IMGUR_CLIENT_ID is not configured")
    try:
        r = requests.post(
            IMGUR_UPLOAD_URL,
            headers={"Authorization": f"Client-ID {client_id}"},
            json={"image": strip_data_url(base64_data), "type": "base64"},
            timeout=IMGUR_TIMEOUT_S,
        )
    except requests.RequestException as e:
        raise UploadError(f"Failed to upload to Imgur: {e}") from e

    try:
        body = r.json()
    except ValueError:
        body = {}
    if not r.ok:
        detail = (body.get("data") or {}).get("error") if isinstance(body, dict) else None
        raise UploadError(detail or f"Failed to upload to Imgur ({r.status_code})")
    if not isinstance(body, dict) or not body.get("success"):
        raise UploadError("Failed to upload image to Imgur")

    link = (body.get("data") or {}).get("link")
    if not link:
        raise UploadError("Imgur response has no link")
    logger.info("Uploaded image to Imgur link=%s", link)
    return link


def parse_mega_link(url: str) -> Tuple[str, str]:
    m = RE_MEGA_LINK.search(url or "")
    if not m:
        raise UploadError("Failed to extract file ID and key from URL")
    file_id = m.group(1) or m.group(3)
    file_key = m.group(2) or m.group(4)
    return file_id, file_key


def _mega_login(email: str, password: str):
    # mega.py pins a tenacity that uses asyncio.coroutine, removed in 3.11
    if sys.version_info >= (3, 11):
        raise UploadError("MEGA uploads need Python < 3.11; mega.py does not import on newer interpreters")
    try:
        from mega import Mega  # optional extra: pip install .[mega]
    except ImportError as e:
        raise UploadError(f"mega.py is not installed: {e}") from e

    return Mega().login(email, password)


def upload_to_mega(filename: str, base64_data: str, email: str, password: str, login=_mega_login) -> Dict[str, str]:
    """Store a base64 payload on MEGA; returns the public link plus its id and key."""
    try:
        payload = base64.b64decode(base64_data, validate=True)
    except (binascii.Error, ValueError) as e:
        raise UploadError(f"Invalid base64 payload: {e}") from e
    logger.info("Buffer created, size=%d", len(payload))

    tmp_dir = tempfile.mkdtemp(prefix="mega-")
    path = os.path.join(tmp_dir, os.path.basename(filename) or "upload.bin")
    try:
        with open(path, "wb") as f:
            f.write(payload)
        try:
            client = login(email, password)
            uploaded = client.upload(path)
            file_url = client.get_upload_link(uploaded)
        except UploadError:
            raise
        except Exception as e:
            raise UploadError(f"MEGA upload failed: {e}") from e
    finally:
        if os.path.exists(path):
            os.remove(path)
        os.rmdir(tmp_dir)

    file_id, file_key = parse_mega_link(file_url)
    logger.info("Uploaded %s to MEGA id=%s", filename, file_id)
    return {"fileUrl": file_url, "fileId": file_id, "fileKey": file_key}
