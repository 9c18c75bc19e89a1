"""
Storyblocks (AudioBlocks) background music search.

Requests are signed with HMAC-SHA256:
    key      = API secret + expires
    resource = path + "?" + sorted query string
"""

import os
import hmac
import time
import hashlib
import logging
from typing import Optional
from urllib.parse import urlencode

from .http_client import read_json, request_with_backoff

logger = logging.getLogger(__name__)

STORYBLOCKS_BASE_URL = "https://api.audioblocks.com"
SEARCH_PATH = "/api/v1/stock-items/search"
SIGNATURE_TTL_SECONDS = 3600
MAX_RESULTS = 20

DEFAULT_KEYWORDS = "upbeat"
DEFAULT_USER_ID = "promo-nex-user"
DEFAULT_PROJECT_ID = "promo-nex-project"


def sign(resource: str, secret: str, expires: int) -> str:
    key = f"{secret}{expires}".encode()
    return hmac.new(key, resource.encode(), hashlib.sha256).hexdigest()


def _first(item: dict, *keys):
    for key in keys:
        value = item.get(key)
        if value is not None:
            return value
    return None


def _normalize_track(item: dict) -> Optional[dict]:
    track_id = _first(item, "id", "ID")
    if track_id is None or track_id == "":
        return None
    duration = _first(item, "duration_seconds", "duration")
    bpm = item.get("bpm")
    return {
        "id": str(track_id),
        "title": str(_first(item, "title", "Title") or "Untitled"),
        "preview_url": _first(item, "preview_url", "preview_URL"),
        "duration_seconds": duration if isinstance(duration, (int, float)) else None,
        "bpm": bpm if isinstance(bpm, (int, float)) else None,
        "thumbnail_url": _first(item, "thumbnail_url", "thumbnail_URL"),
    }


async def search_music(
    query: str = DEFAULT_KEYWORDS,
    page: int = 1,
    per_page: int = MAX_RESULTS,
    user_id: str = DEFAULT_USER_ID,
    project_id: str = DEFAULT_PROJECT_ID,
) -> dict:
    """
    Search Storyblocks music.

    Returns {success, tracks, total, page, per_page} or {success: False, error}.
    A missing key pair is reported in the result, not raised.
    """
    api_key = os.environ.get("STORYBLOCKS_API_KEY", "").strip()
    secret = os.environ.get("STORYBLOCKS_API_SECRET", "").strip()
    if not api_key or not secret:
        return {
            "success": False,
            "error": (
                "Storyblocks API keys not configured "
                "(STORYBLOCKS_API_KEY, STORYBLOCKS_API_SECRET)"
            ),
        }

    page = max(1, int(page))
    per_page = max(1, min(MAX_RESULTS, int(per_page)))
    expires = int(time.time()) + SIGNATURE_TTL_SECONDS

    params = {
        "api_key": api_key,
        "expires": str(expires),
        "keywords": (query or "").strip() or DEFAULT_KEYWORDS,
        "page": str(page),
        "num_results": str(per_page),
        "user_id": user_id or DEFAULT_USER_ID,
        "project_id": project_id or DEFAULT_PROJECT_ID,
    }
    query_string = urlencode(sorted(params.items()))
    signature = sign(f"{SEARCH_PATH}?{query_string}", secret, expires)
    url = f"{STORYBLOCKS_BASE_URL}{SEARCH_PATH}?{query_string}&hmac={signature}"

    response = await request_with_backoff("GET", url, service="storyblocks", timeout=20)
    data = read_json(response, "storyblocks")
    if not response.is_success:
        message = data.get("message") or data.get("error") or response.text[:200]
        logger.warning(f"Storyblocks search failed ({response.status_code}): {message}")
        return {"success": False, "error": f"Storyblocks API error: {response.status_code} {message}"}

    raw = data.get("info") or data.get("results") or []
    tracks = [t for t in (_normalize_track(item) for item in raw if isinstance(item, dict)) if t]
    total = data.get("totalSearchResults", data.get("total_search_results", len(tracks)))

    logger.info(f"Storyblocks '{params['keywords']}' page={page}: {len(tracks)} tracks")
    return {
        "success": True,
        "tracks": tracks,
        "total": total,
        "page": page,
        "per_page": per_page,
    }
