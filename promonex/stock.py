"""
Stock background search.

Images (Fetch background modal): Pexels photos + Pixabay images.
Videos (Scene 2 stock video):    Pexels, Pixabay and Coverr videos.

Every source is normalised to:
    {id, title, thumbnail_url, preview_url, download_url, type}
and results are interleaved round-robin across sources.
"""

import os
import asyncio
import logging

from .http_client import request_with_backoff

logger = logging.getLogger(__name__)

MAX_PER_PAGE = 30

DEMO_IMAGES = [
    ("demo-1", "Abstract Blue Gradient", "photo-1557672172-298e090bd0f1"),
    ("demo-2", "Purple Pink Gradient", "photo-1618005182384-a83a8bd57fbe"),
    ("demo-3", "Orange Yellow Gradient", "photo-1579546929518-9e396f3cc809"),
    ("demo-4", "Green Teal Gradient", "photo-1558591710-4b4a1ae0f04d"),
    ("demo-5", "Red Pink Gradient", "photo-1550684848-fac1c5b4e853"),
    ("demo-6", "Dark Blue Purple", "photo-1618005198919-d3d4b5a92ead"),
]


def _demo_images() -> list[dict]:
    base = "https://images.unsplash.com"
    return [
        {
            "id": demo_id,
            "title": title,
            "thumbnail_url": f"{base}/{photo}?w=400",
            "preview_url": f"{base}/{photo}?w=1200",
            "download_url": f"{base}/{photo}?w=1920",
            "type": "photo",
        }
        for demo_id, title, photo in DEMO_IMAGES
    ]


async def _get_json(url: str, service: str, **kwargs) -> dict:
    response = await request_with_backoff("GET", url, service=service, timeout=20, **kwargs)
    if not response.is_success:
        raise RuntimeError(f"{service.capitalize()} API error: {response.status_code}")
    return response.json()


# ── Images ───────────────────────────────────────────────────────────────────

async def search_pexels(query: str, page: int, per_page: int) -> tuple[list[dict], int]:
    api_key = os.environ.get("PEXELS_API_KEY")
    if not api_key:
        return [], 0

    data = await _get_json(
        "https://api.pexels.com/v1/search",
        "pexels",
        params={"query": query, "per_page": per_page, "page": page},
        headers={"Authorization": api_key},
    )
    images = []
    for photo in data.get("photos") or []:
        src = photo.get("src") or {}
        images.append({
            "id": f"pexels-{photo.get('id')}",
            "title": photo.get("alt") or f"Photo by {photo.get('photographer') or 'Pexels'}",
            "thumbnail_url": src.get("medium") or src.get("small"),
            "preview_url": src.get("large") or src.get("medium"),
            "download_url": src.get("original") or src.get("large2x") or src.get("large"),
            "type": "photo",
        })
    return images, data.get("total_results", len(images))


def _pixabay_title(hit: dict, kind: str) -> str:
    first_tag = (hit.get("tags") or "").split(",")[0].strip()
    return first_tag or f"{kind} by {hit.get('user') or 'Pixabay'}"


async def search_pixabay(query: str, page: int, per_page: int) -> tuple[list[dict], int]:
    api_key = os.environ.get("PIXABAY_API_KEY")
    if not api_key:
        return [], 0

    data = await _get_json(
        "https://pixabay.com/api/",
        "pixabay",
        params={
            "key": api_key,
            "q": query,
            "image_type": "photo",
            "page": page,
            "per_page": per_page,
            "safesearch": "true",
        },
    )
    images = [
        {
            "id": f"pixabay-{hit.get('id')}",
            "title": _pixabay_title(hit, "Photo"),
            "thumbnail_url": hit.get("previewURL"),
            "preview_url": hit.get("webformatURL") or hit.get("largeImageURL"),
            "download_url": (
                hit.get("largeImageURL") or hit.get("fullHDURL")
                or hit.get("imageURL") or hit.get("webformatURL")
            ),
            "type": "photo",
        }
        for hit in data.get("hits") or []
    ]
    return images, data.get("total") or data.get("totalHits") or len(images)


# ── Videos ───────────────────────────────────────────────────────────────────

async def search_pexels_videos(query: str, page: int, per_page: int) -> tuple[list[dict], int]:
    api_key = os.environ.get("PEXELS_API_KEY")
    if not api_key:
        return [], 0

    data = await _get_json(
        "https://api.pexels.com/videos/search",
        "pexels",
        params={"query": query, "per_page": per_page, "page": page},
        headers={"Authorization": api_key},
    )
    videos = []
    for video in data.get("videos") or []:
        files = video.get("video_files") or []
        chosen = next((f for f in files if f.get("quality") in ("hd", "sd")), files[0] if files else {})
        pictures = video.get("video_pictures") or []
        picture = (pictures[0].get("picture") if pictures else None) or video.get("image")
        videos.append({
            "id": f"pexels-v-{video.get('id')}",
            "title": f"Video by {(video.get('user') or {}).get('name') or 'Pexels'}",
            "thumbnail_url": picture,
            "preview_url": chosen.get("link"),
            "download_url": chosen.get("link"),
            "type": "video",
        })
    return videos, data.get("total_results", len(videos))


async def search_pixabay_videos(query: str, page: int, per_page: int) -> tuple[list[dict], int]:
    api_key = os.environ.get("PIXABAY_API_KEY")
    if not api_key:
        return [], 0

    data = await _get_json(
        "https://pixabay.com/api/videos/",
        "pixabay",
        params={"key": api_key, "q": query, "page": page, "per_page": per_page, "safesearch": "true"},
    )
    videos = []
    for hit in data.get("hits") or []:
        renditions = hit.get("videos") or {}
        chosen = renditions.get("medium") or renditions.get("small") or renditions.get("large") or {}
        videos.append({
            "id": f"pixabay-v-{hit.get('id')}",
            "title": _pixabay_title(hit, "Video"),
            "thumbnail_url": chosen.get("thumbnail"),
            "preview_url": chosen.get("url"),
            "download_url": chosen.get("url"),
            "type": "video",
        })
    return videos, data.get("total") or data.get("totalHits") or len(videos)


async def search_coverr(query: str, page: int, per_page: int) -> tuple[list[dict], int]:
    api_key = os.environ.get("COVERR_API_KEY")
    if not api_key:
        return [], 0

    # Coverr pages are 0-based
    data = await _get_json(
        "https://api.coverr.co/videos",
        "coverr",
        params={"query": query, "page": max(0, page - 1), "page_size": per_page, "urls": "true"},
        headers={"Authorization": f"Bearer {api_key}"},
    )
    videos = []
    for hit in data.get("hits") or []:
        urls = hit.get("urls") or {}
        videos.append({
            "id": f"coverr-{hit.get('id')}",
            "title": hit.get("title") or "Coverr video",
            "thumbnail_url": hit.get("thumbnail") or hit.get("poster"),
            "preview_url": urls.get("mp4_preview") or urls.get("mp4"),
            "download_url": urls.get("mp4_download") or urls.get("mp4") or urls.get("mp4_preview"),
            "type": "video",
        })
    return videos, data.get("total", len(videos))


# ── Aggregation ──────────────────────────────────────────────────────────────

def interleave(lists: list[list[dict]], limit: int) -> list[dict]:
    """Round-robin merge: first item of each source, then second, ..."""
    merged: list[dict] = []
    idx = 0
    while len(merged) < limit:
        added = 0
        for items in lists:
            if idx < len(items):
                merged.append(items[idx])
                added += 1
                if len(merged) >= limit:
                    break
        if added == 0:
            break
        idx += 1
    return merged


async def _aggregate(
    searches: dict,
    configured: dict[str, bool],
    query: str,
    page: int,
    per_page: int,
) -> dict:
    names = list(searches)
    results = await asyncio.gather(
        *(searches[name](query, page, per_page) for name in names),
        return_exceptions=True,
    )

    by_source: list[list[dict]] = []
    sources: dict[str, int] = {}
    errors: dict[str, str] = {}
    total_from_apis = 0

    for name, result in zip(names, results):
        if isinstance(result, Exception):
            logger.warning(f"Stock search via {name} failed: {result}")
            errors[name] = str(result) or "Request failed"
            continue
        items, total = result
        if items:
            by_source.append(items)
            sources[name] = len(items)
            total_from_apis += total
        elif not configured[name]:
            errors[name] = "API key not set"
        else:
            errors[name] = "No results"

    merged = interleave(by_source, per_page)
    return {
        "success": True,
        "images": merged,
        "total": total_from_apis or len(merged),
        "page": page,
        "per_page": per_page,
        "sources": sources,
        "errors": errors or None,
    }


async def search_stock_images(query: str, page: int = 1, per_page: int = 12) -> dict:
    """Search stock photos across Pexels and Pixabay."""
    per = min(per_page, MAX_PER_PAGE)
    configured = {
        "pexels": bool(os.environ.get("PEXELS_API_KEY")),
        "pixabay": bool(os.environ.get("PIXABAY_API_KEY")),
    }

    if not any(configured.values()):
        return {
            "success": True,
            "images": _demo_images(),
            "total": 8,
            "page": 1,
            "per_page": per,
            "source": "demo",
        }

    return await _aggregate(
        {"pexels": search_pexels, "pixabay": search_pixabay},
        configured, query.strip(), page, per,
    )


async def search_stock_videos(query: str, page: int = 1, per_page: int = 12) -> dict:
    """Search stock videos across Pexels, Pixabay and Coverr."""
    per = min(per_page, MAX_PER_PAGE)
    configured = {
        "pexels": bool(os.environ.get("PEXELS_API_KEY")),
        "pixabay": bool(os.environ.get("PIXABAY_API_KEY")),
        "coverr": bool(os.environ.get("COVERR_API_KEY")),
    }

    if not any(configured.values()):
        return {
            "success": True,
            "images": [],
            "total": 0,
            "page": 1,
            "per_page": per,
            "errors": {name: "API key not set" for name in configured},
        }

    return await _aggregate(
        {
            "pexels": search_pexels_videos,
            "pixabay": search_pixabay_videos,
            "coverr": search_coverr,
        },
        configured, query.strip(), page, per,
    )
