from __future__ import annotations

import logging
import os
import uuid

from tickethub.core.config import settings

logger = logging.getLogger(__name__)

MIME_EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "application/pdf": ".pdf",
}

LOCAL_SCHEME = "local://"
GCS_SCHEME = "gs://"


def _use_gcs() -> bool:
    return bool(settings.GCS_BUCKET_NAME and settings.GOOGLE_APPLICATION_CREDENTIALS)


def _gcs_bucket():
    try:
        from google.cloud import storage  # type: ignore
    except ImportError as e:
        raise RuntimeError("google-cloud-storage is not installed. Install the 'gcs' extra and retry") from e
    client = storage.Client()
    return client.bucket(settings.GCS_BUCKET_NAME)


def _local_path(object_key: str) -> str:
    base = os.path.abspath(settings.STORAGE_LOCAL_DIR or "./data/files")
    path = os.path.abspath(os.path.join(base, object_key))
    if os.path.commonpath([base, path]) != base:
        raise ValueError("object key escapes storage directory")
    return path


def store(data: bytes, mime: str, folder: str = "receipts") -> str:
    """Persist bytes and return a URL that `retrieve` understands."""
    object_key = f"{folder}/{uuid.uuid4().hex}{MIME_EXTENSIONS.get(mime, '.bin')}"

    if _use_gcs():
        blob = _gcs_bucket().blob(object_key)
        blob.upload_from_string(data, content_type=mime)
        return f"{GCS_SCHEME}{settings.GCS_BUCKET_NAME}/{object_key}"

    path = _local_path(object_key)
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "wb") as f:
        f.write(data)
    logger.debug("stored %d bytes at %s", len(data), path)
    return f"{LOCAL_SCHEME}{object_key}"


def retrieve(url: str) -> bytes:
    if url.startswith(GCS_SCHEME):
        bucket_name, _, object_key = url[len(GCS_SCHEME):].partition("/")
        if bucket_name != settings.GCS_BUCKET_NAME:
            raise ValueError("object lives in an unknown bucket")
        return _gcs_bucket().blob(object_key).download_as_bytes()
    if url.startswith(LOCAL_SCHEME):
        with open(_local_path(url[len(LOCAL_SCHEME):]), "rb") as f:
            return f.read()
    raise ValueError(f"unsupported storage url: {url}")


def delete(url: str) -> None:
    """Remove a stored object. An object that is already gone is not an error."""
    if url.startswith(GCS_SCHEME):
        bucket_name, _, object_key = url[len(GCS_SCHEME):].partition("/")
        if bucket_name != settings.GCS_BUCKET_NAME:
            raise ValueError("object lives in an unknown bucket")
        blob = _gcs_bucket().blob(object_key)
        if blob.exists():
            blob.delete()
        return
    if url.startswith(LOCAL_SCHEME):
        path = _local_path(url[len(LOCAL_SCHEME):])
        if os.path.exists(path):
            os.remove(path)
            logger.debug("removed %s", path)
        return
    raise ValueError(f"unsupported storage url: {url}")
