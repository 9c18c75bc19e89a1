import hmac
import hashlib

import httpx

from promonex import storyblocks


async def test_missing_keys_are_reported():
    result = await storyblocks.search_music("jazz")
    assert result["success"] is False
    assert "STORYBLOCKS_API_KEY" in result["error"]


async def test_signed_search(monkeypatch, mock_http):
    monkeypatch.setenv("STORYBLOCKS_API_KEY", "pub")
    monkeypatch.setenv("STORYBLOCKS_API_SECRET", "sec")
    seen = {}

    def handler(request):
        seen["url"] = request.url
        return httpx.Response(200, json={
            "totalSearchResults": 57,
            "info": [
                {"id": 11, "title": "Bright Day", "preview_url": "https://a/1.mp3", "duration": 95, "bpm": 120},
                {"ID": "12", "Title": "Night", "preview_URL": "https://a/2.mp3", "thumbnail_URL": "https://a/2.jpg"},
                {"title": "no id"},
            ],
        })

    mock_http(handler)
    result = await storyblocks.search_music("", page=0, per_page=50, user_id="u", project_id="p")

    params = dict(seen["url"].params)
    assert params["keywords"] == "upbeat"
    assert params["page"] == "1"
    assert params["num_results"] == "20"

    signature = params.pop("hmac")
    query = "&".join(f"{k}={params[k]}" for k in sorted(params))
    expected = hmac.new(
        f"sec{params['expires']}".encode(),
        f"{storyblocks.SEARCH_PATH}?{query}".encode(),
        hashlib.sha256,
    ).hexdigest()
    assert signature == expected

    assert result["success"] is True
    assert result["total"] == 57
    assert result["tracks"] == [
        {
            "id": "11", "title": "Bright Day", "preview_url": "https://a/1.mp3",
            "duration_seconds": 95, "bpm": 120, "thumbnail_url": None,
        },
        {
            "id": "12", "title": "Night", "preview_url": "https://a/2.mp3",
            "duration_seconds": None, "bpm": None, "thumbnail_url": "https://a/2.jpg",
        },
    ]


async def test_api_error_is_reported(monkeypatch, mock_http):
    monkeypatch.setenv("STORYBLOCKS_API_KEY", "pub")
    monkeypatch.setenv("STORYBLOCKS_API_SECRET", "sec")
    mock_http(lambda request: httpx.Response(403, json={"message": "Invalid HMAC"}))

    result = await storyblocks.search_music("jazz")
    assert result == {"success": False, "error": "Storyblocks API error: 403 Invalid HMAC"}
