import json

import httpx
import pytest

from promonex import audio
from promonex.http_client import UpstreamError


async def test_voices_require_key():
    with pytest.raises(UpstreamError, match="ELEVENLABS_API_KEY is not set"):
        await audio.get_voices()


async def test_voices_are_filtered_and_defaulted(monkeypatch, mock_http):
    monkeypatch.setenv("ELEVENLABS_API_KEY", "xi-key")

    def handler(request):
        assert request.headers["xi-api-key"] == "xi-key"
        return httpx.Response(200, json={"voices": [
            {"voice_id": "v1", "name": "Rachel", "preview_url": "https://a/r.mp3"},
            {"voice_id": "v2"},
            {"name": "No id"},
            "garbage",
        ]})

    mock_http(handler)
    voices = await audio.get_voices()

    assert voices == [
        {"voice_id": "v1", "name": "Rachel", "preview_url": "https://a/r.mp3"},
        {"voice_id": "v2", "name": "v2", "preview_url": None},
    ]


async def test_voices_error_uses_detail_message(monkeypatch, mock_http):
    monkeypatch.setenv("ELEVENLABS_API_KEY", "xi-key")
    mock_http(lambda request: httpx.Response(401, json={"detail": {"message": "Invalid API key"}}))

    with pytest.raises(UpstreamError, match="Invalid API key"):
        await audio.get_voices()


async def test_generate_script(monkeypatch, mock_http):
    monkeypatch.setenv("BACKEND_URL", "https://backend.test")

    def handler(request):
        assert request.url.path == "/audio/generate-script"
        assert json.loads(request.content) == {
            "voice_id": "v1", "user_id": "shop", "short_id": "s1", "productDescription": "Boots",
        }
        return httpx.Response(200, json={"script": "Step into comfort.", "words_per_minute": 150})

    mock_http(handler)
    result = await audio.generate_script("v1", "shop", "s1", "Boots")

    assert result["script"] == "Step into comfort."
    assert result["short_id"] == "s1"
    assert result["words_per_minute"] == 150


async def test_generate_script_requires_script(monkeypatch, mock_http):
    monkeypatch.setenv("BACKEND_URL", "https://backend.test")
    mock_http(lambda request: httpx.Response(200, json={"message": "ok"}))

    with pytest.raises(UpstreamError, match="missing script"):
        await audio.generate_script("v1", "shop", "s1")


async def test_generate_audio(monkeypatch, mock_http):
    monkeypatch.setenv("BACKEND_URL", "https://backend.test")
    subtitles = [{"text": "Step", "start": 0.0, "end": 0.4}]
    mock_http(lambda request: httpx.Response(200, json={
        "audio_url": "/static/audio/s1.mp3", "duration": 21.5, "is_cached": True, "subtitle_timing": subtitles,
    }))

    result = await audio.generate_audio("v1", "shop", "s1", "Step into comfort.")

    assert result["audio_url"] == "/static/audio/s1.mp3"
    assert result["script"] == "Step into comfort."
    assert result["subtitle_timing"] == subtitles
    assert result["is_cached"] is True


async def test_generate_audio_backend_error(monkeypatch, mock_http):
    monkeypatch.setenv("BACKEND_URL", "https://backend.test")
    mock_http(lambda request: httpx.Response(500, json={"error": "TTS quota exceeded"}))

    with pytest.raises(UpstreamError, match="TTS quota exceeded"):
        await audio.generate_audio("v1", "shop", "s1", "text")


def test_audio_config(monkeypatch):
    monkeypatch.setenv("BACKEND_URL", "https://backend.test/")
    assert audio.audio_config() == {"backendUrl": "https://backend.test"}
