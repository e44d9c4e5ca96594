import logging
import os
from datetime import datetime, timezone
from functools import lru_cache
from pathlib import Path

import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError
from dotenv import dotenv_values


logger = logging.getLogger(__name__)

_STORAGE_ERRORS = (BotoCoreError, ClientError, OSError)


@lru_cache(maxsize=1)
def _storage_config() -> dict[str, str]:
    env_path = Path(__file__).resolve().parents[2] / ".env"
    env_values = dotenv_values(env_path) if env_path.exists() else {}

    keys = [
        "SPACES_KEY",
        "SPACES_SECRET",
        "SPACES_BUCKET",
        "SPACES_REGION",
        "SPACES_ENDPOINT",
        "DOCUMENT_STORAGE_ROOT",
    ]
    config: dict[str, str] = {}
    for key in keys:
        config[key] = (os.getenv(key) or env_values.get(key) or "").strip()

    if not config["SPACES_BUCKET"]:
        config["SPACES_BUCKET"] = "load-pdfs"
    if not config["DOCUMENT_STORAGE_ROOT"]:
        config["DOCUMENT_STORAGE_ROOT"] = "/srv/dispatch-data/documents"

    return config


def storage_bucket() -> str:
    return _storage_config()["SPACES_BUCKET"]


def _local_root(local_root: str | Path | None) -> Path:
    return Path(local_root) if local_root is not None else Path(_storage_config()["DOCUMENT_STORAGE_ROOT"])


def _spaces_client():
    config = _storage_config()
    required = [
        config["SPACES_KEY"],
        config["SPACES_SECRET"],
        config["SPACES_REGION"],
        config["SPACES_ENDPOINT"],
    ]
    if any(not value for value in required):
        return None

    return boto3.session.Session().client(
        "s3",
        region_name=config["SPACES_REGION"],
        endpoint_url=config["SPACES_ENDPOINT"],
        aws_access_key_id=config["SPACES_KEY"],
        aws_secret_access_key=config["SPACES_SECRET"],
        config=Config(signature_version="s3v4"),
    )


def save_bytes_by_key(
    key: str,
    file_bytes: bytes,
    *,
    content_type: str = "application/pdf",
    local_root: str | Path | None = None,
) -> dict[str, str | bool | None]:
    """
    Write bytes to Spaces when credentials are configured, otherwise under the local
    document root. Never raises: the caller decides how to record a failed write.
    """
    result: dict[str, str | bool | None] = {
        "saved": False,
        "backend": None,
        "bucket": None,
        "key": key,
        "local_path": None,
        "error": None,
    }

    client = _spaces_client()
    if client is not None:
        result["backend"] = "spaces"
        try:
            client.put_object(
                Bucket=storage_bucket(),
                Key=key,
                Body=file_bytes,
                ContentType=content_type,
            )
        except _STORAGE_ERRORS as exc:
            logger.warning("document_storage: spaces put failed key=%s error=%s", key, exc)
            result["error"] = str(exc) or exc.__class__.__name__
            return result
        result["saved"] = True
        result["bucket"] = storage_bucket()
        return result

    result["backend"] = "local"
    local_path = _local_root(local_root) / key
    try:
        local_path.parent.mkdir(parents=True, exist_ok=True)
        local_path.write_bytes(file_bytes)
    except OSError as exc:
        logger.warning("document_storage: local write failed path=%s error=%s", local_path, exc)
        result["error"] = str(exc) or exc.__class__.__name__
        return result

    result["saved"] = True
    result["local_path"] = str(local_path)
    return result


def read_bytes_by_key(key: str, *, local_root: str | Path | None = None) -> bytes | None:
    client = _spaces_client()
    if client is not None:
        try:
            response = client.get_object(Bucket=storage_bucket(), Key=key)
            return response["Body"].read()
        except _STORAGE_ERRORS as exc:
            logger.warning("document_storage: spaces get failed key=%s error=%s", key, exc)
            return None

    local_path = _local_root(local_root) / key
    if not local_path.exists():
        return None
    return local_path.read_bytes()


def delete_by_key(key: str, *, local_root: str | Path | None = None) -> bool:
    client = _spaces_client()
    if client is not None:
        try:
            client.delete_object(Bucket=storage_bucket(), Key=key)
        except _STORAGE_ERRORS as exc:
            logger.warning("document_storage: spaces delete failed key=%s error=%s", key, exc)
            return False
        return True

    local_path = _local_root(local_root) / key
    try:
        local_path.unlink(missing_ok=True)
    except OSError as exc:
        logger.warning("document_storage: local delete failed path=%s error=%s", local_path, exc)
        return False
    return True


def list_objects(prefix: str, *, local_root: str | Path | None = None) -> list[dict]:
    client = _spaces_client()
    if client is not None:
        found: list[dict] = []
        paginator = client.get_paginator("list_objects_v2")
        for page in paginator.paginate(Bucket=storage_bucket(), Prefix=prefix):
            for item in page.get("Contents", []):
                found.append({"key": item["Key"], "last_modified": item["LastModified"]})
        return found

    root = _local_root(local_root)
    base = root / prefix
    if not base.exists():
        return []
    return [
        {
            "key": path.relative_to(root).as_posix(),
            "last_modified": datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc),
        }
        for path in sorted(base.rglob("*"))
        if path.is_file()
    ]


def generate_presigned_get_url(key: str, expires_seconds: int = 3600) -> str | None:
    client = _spaces_client()
    if client is None:
        return None
    try:
        return client.generate_presigned_url(
            "get_object",
            Params={"Bucket": storage_bucket(), "Key": key},
            ExpiresIn=expires_seconds,
        )
    except _STORAGE_ERRORS:
        return None
