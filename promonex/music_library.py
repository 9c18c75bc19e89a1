"""Local background music: PUBLIC_DIR/Music/<genre>/*.mp3"""

import logging
from urllib.parse import quote

from .storage import public_dir

logger = logging.getLogger(__name__)

MUSIC_FOLDER = "Music"


def list_local_tracks() -> list[dict]:
    music_dir = public_dir() / MUSIC_FOLDER
    if not music_dir.is_dir():
        logger.info(f"No local music directory at {music_dir}")
        return []

    tracks = []
    for genre_dir in music_dir.iterdir():
        if not genre_dir.is_dir():
            continue
        genre = genre_dir.name
        for path in genre_dir.iterdir():
            if not path.is_file() or path.suffix.lower() != ".mp3":
                continue
            tracks.append({
                "id": f"{genre}/{path.stem}",
                "title": path.stem.replace("_", " "),
                "genre": genre,
                "preview_url": f"/{MUSIC_FOLDER}/{quote(genre)}/{quote(path.name)}",
                "duration_seconds": None,
            })

    tracks.sort(key=lambda t: (t["genre"], t["title"]))
    return tracks
