"""Utility functions for storage paths and uploads."""

import logging
import time
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

from google.cloud import storage

logger = logging.getLogger(__name__)


def parse_gcs_path(path: str) -> tuple[str, str]:
    """
    Parse GCS path into bucket and blob name.

    Args:
        path: GCS path (gs://bucket/path/to/file)

    Returns:
        Tuple of (bucket_name, blob_name)
    """
    parsed = urlparse(path)
    if parsed.scheme != "gs":
        raise ValueError(f"Not a GCS path: {path}")
    bucket = parsed.netloc
    blob = parsed.path.lstrip("/")
    return bucket, blob


def parse_cloud_path(path: str) -> tuple[str, str]:
    """Split a remote path into its fsspec protocol and protocol-less path.

    Args:
        path: Remote path (https://..., gs://bucket/path or s3://bucket/path)

    Returns:
        Tuple of (protocol, path). HTTP(S) URLs are returned unchanged.
    """
    if path.startswith(("http://", "https://")):
        return urlparse(path).scheme, path
    elif path.startswith("gs://"):
        return "gs", path[len("gs://"):]
    elif path.startswith("s3://"):
        return "s3", path[len("s3://"):]
    else:
        raise ValueError(f"Unsupported path protocol: {path}")


def is_gcs_path(path: str) -> bool:
    """Check if path is a GCS path."""
    return path.startswith("gs://")


def ensure_local_dir(path: Path) -> None:
    """Ensure local directory exists."""
    path.mkdir(parents=True, exist_ok=True)


def get_gcs_client() -> storage.Client:
    """Get authenticated GCS client."""
    return storage.Client()


def upload_gcs_file(
    local_path: Path,
    gcs_path: str,
    client: Optional[storage.Client] = None,
    max_retries: int = 3,
    timeout: int = 600,
) -> None:
    """
    Upload a local file to GCS with retries.

    Args:
        local_path: Local file path
        gcs_path: Destination (gs://bucket/blob)
        client: Optional GCS client
        max_retries: Maximum number of attempts
        timeout: Timeout in seconds per attempt

    Raises:
        RuntimeError: If the upload still fails after max_retries attempts
    """
    if client is None:
        client = get_gcs_client()

    bucket_name, blob_name = parse_gcs_path(gcs_path)
    blob = client.bucket(bucket_name).blob(
        blob_name, chunk_size=5 * 1024 * 1024
    )  # 5MB chunks for resumable upload

    for attempt in range(max_retries):
        try:
            blob.upload_from_filename(str(local_path), timeout=timeout, checksum="md5")
            logger.info(f"Uploaded {local_path} to {gcs_path}")
            return
        except Exception as e:
            if attempt < max_retries - 1:
                # Exponential backoff: 2^attempt seconds
                wait_time = 2**attempt
                logger.warning(
                    f"Upload failed for {local_path} (attempt {attempt + 1}/{max_retries}): {e}. "
                    f"Retrying in {wait_time}s..."
                )
                time.sleep(wait_time)
            else:
                raise RuntimeError(
                    f"Failed to upload {local_path} to {gcs_path} after {max_retries} attempts: {e}"
                ) from e


def format_bytes(size: int) -> str:
    """Format bytes as human-readable string."""
    for unit in ["B", "KB", "MB", "GB", "TB"]:
        if size < 1024.0:
            return f"{size:.2f} {unit}"
        size /= 1024.0
    return f"{size:.2f} PB"
