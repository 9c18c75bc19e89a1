"""
Public asset storage.

Background-removed images are stored under:
  bg_removed_images/{uuid}.png

With R2 credentials configured, assets go to the R2 bucket via the S3 API.
Otherwise they are written under PUBLIC_DIR and served by the app's static
mount, addressed from PUBLIC_BASE_URL.
"""

import os
import logging
from pathlib import Path

from .http_client import async_client

logger = logging.getLogger(__name__)


def public_dir() -> Path:
    return Path(os.environ.get("PUBLIC_DIR", "public"))


def public_url(key: str) -> str:
    base = os.environ.get("PUBLIC_BASE_URL", "").rstrip("/")
    return f"{base}/{key}"


def _r2_configured() -> bool:
    return all(
        os.environ.get(name)
        for name in ("R2_ACCOUNT_ID", "R2_ACCESS_KEY_ID", "R2_SECRET_ACCESS_KEY", "R2_PUBLIC_URL")
    )


async def download_bytes(url: str, timeout: float = 30) -> tuple[bytes, str]:
    """Download a public URL. Returns (body, content type)."""
    async with async_client(timeout) as client:
        resp = await client.get(url, follow_redirects=True)
        resp.raise_for_status()
        return resp.content, resp.headers.get("content-type", "")


def upload_to_r2(key: str, data: bytes, content_type: str = "image/png") -> str:
    """Upload bytes to R2 via the S3 API. Returns the public URL."""
    import boto3
    from botocore.config import Config as BotoConfig

    s3 = boto3.client(
        "s3",
        endpoint_url=f"https://{os.environ['R2_ACCOUNT_ID']}.r2.cloudflarestorage.com",
        aws_access_key_id=os.environ["R2_ACCESS_KEY_ID"],
        aws_secret_access_key=os.environ["R2_SECRET_ACCESS_KEY"],
        config=BotoConfig(signature_version="s3v4"),
        region_name="auto",
    )
    s3.put_object(
        Bucket=os.environ.get("R2_BUCKET_NAME", "assets"),
        Key=key,
        Body=data,
        ContentType=content_type,
    )
    url = f"{os.environ['R2_PUBLIC_URL'].rstrip('/')}/{key}"
    logger.info(f"Uploaded to R2: {url}")
    return url


def save_public_asset(folder: str, filename: str, data: bytes, content_type: str = "image/png") -> str:
    """Store an asset and return the URL the frontend and backends can fetch."""
    key = f"{folder}/{filename}"

    if _r2_configured():
        return upload_to_r2(key, data, content_type)

    target_dir = public_dir() / folder
    target_dir.mkdir(parents=True, exist_ok=True)
    (target_dir / filename).write_bytes(data)
    logger.info(f"Saved public asset: {target_dir / filename}")
    return public_url(key)
