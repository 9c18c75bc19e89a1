"""
Audio: ElevenLabs voices plus backend script generation and TTS.

  Voices:   GET  https://api.elevenlabs.io/v1/voices (ELEVENLABS_API_KEY)
  Script:   POST {BACKEND_URL}/audio/generate-script
  Generate: POST {BACKEND_URL}/audio/generate
"""

import os
import logging

from .http_client import (
    UpstreamError,
    backend_base,
    error_message,
    read_json,
    request_with_backoff,
)

logger = logging.getLogger(__name__)

ELEVENLABS_VOICES_URL = "https://api.elevenlabs.io/v1/voices"


def audio_config() -> dict:
    """Base URL the frontend resolves relative audio_url paths against."""
    return {"backendUrl": os.environ.get("BACKEND_URL", "").rstrip("/")}


async def get_voices() -> list[dict]:
    """List ElevenLabs voices as {voice_id, name, preview_url}."""
    api_key = os.environ.get("ELEVENLABS_API_KEY", "").strip()
    if not api_key:
        raise UpstreamError("elevenlabs", "ELEVENLABS_API_KEY is not set in .env")

    response = await request_with_backoff(
        "GET", ELEVENLABS_VOICES_URL, service="elevenlabs", timeout=15,
        headers={"xi-api-key": api_key, "Content-Type": "application/json"},
    )
    data = read_json(response, "elevenlabs")
    if not response.is_success:
        raise UpstreamError(
            "elevenlabs", error_message(data, response, "detail"), response.status_code,
        )

    voices = []
    for voice in data.get("voices") or []:
        if not isinstance(voice, dict) or not isinstance(voice.get("voice_id"), str):
            continue
        voices.append({
            "voice_id": voice["voice_id"],
            "name": voice["name"] if isinstance(voice.get("name"), str) else voice["voice_id"],
            "preview_url": voice.get("preview_url") if isinstance(voice.get("preview_url"), str) else None,
        })
    return voices


async def _post_backend(path: str, payload: dict, timeout: float) -> dict:
    endpoint = f"{backend_base()}{path}"
    response = await request_with_backoff(
        "POST", endpoint, service="backend", timeout=timeout, retries=1, json=payload,
    )
    data = read_json(response, "backend")
    if not response.is_success:
        message = error_message(data, response, "error")
        logger.warning(f"{path} failed status={response.status_code} error={message}")
        raise UpstreamError("backend", message, response.status_code)
    return data


async def generate_script(
    voice_id: str,
    user_id: str,
    short_id: str,
    product_description: str = "",
) -> dict:
    """Generate a voice-over script sized for the voice's speaking rate."""
    logger.info(
        f"[script] voice_id={voice_id} user_id={user_id} short_id={short_id} "
        f"has_product_description={bool(product_description)}"
    )
    data = await _post_backend(
        "/audio/generate-script",
        {
            "voice_id": voice_id,
            "user_id": user_id,
            "short_id": short_id,
            "productDescription": product_description or "",
        },
        timeout=60,
    )
    if not isinstance(data.get("script"), str):
        raise UpstreamError("backend", "Invalid response: missing script")

    logger.info(f"[script] short_id={short_id} script_length={len(data['script'])}")
    return {
        "short_id": data.get("short_id") or short_id,
        "script": data["script"],
        "words_per_minute": data.get("words_per_minute"),
        "target_duration_seconds": data.get("target_duration_seconds"),
        "message": data.get("message"),
    }


async def generate_audio(voice_id: str, user_id: str, short_id: str, script: str) -> dict:
    """Text-to-speech for a script. Returns the audio URL and subtitle timing."""
    logger.info(f"[audio] voice_id={voice_id} short_id={short_id} script_length={len(script)}")
    data = await _post_backend(
        "/audio/generate",
        {"voice_id": voice_id, "user_id": user_id, "short_id": short_id, "script": script},
        timeout=120,
    )
    if not isinstance(data.get("audio_url"), str):
        raise UpstreamError("backend", "Invalid response: missing audio_url")

    subtitles = data.get("subtitle_timing")
    logger.info(
        f"[audio] audio_url={data['audio_url']} duration={data.get('duration')} "
        f"is_cached={data.get('is_cached', False)} subtitle_segments={len(subtitles or [])}"
    )
    return {
        "voice_id": data.get("voice_id") or voice_id,
        "user_id": data.get("user_id") or user_id,
        "short_id": data.get("short_id") or short_id,
        "audio_url": data["audio_url"],
        "script": data.get("script") or script,
        "words_per_minute": data.get("words_per_minute"),
        "duration": data.get("duration"),
        "created_at": data.get("created_at"),
        "is_cached": data.get("is_cached"),
        "message": data.get("message"),
        "subtitle_timing": subtitles,
    }
