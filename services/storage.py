from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import os
import re
import time
from typing import Optional
from urllib.parse import quote, urlencode

from config import Config
from errors import DependencyError, ValidationError
from services.gas_uploader import gas_delete_file, gas_signed_url, gas_upload_file

log = logging.getLogger("storage")

_REF_RE = re.compile(r"^[A-Za-z0-9._-]+(?:/[A-Za-z0-9._-]+)*$")


def validate_file_ref(file_ref: str) -> str:
    ref = str(file_ref or "").strip()
    if not ref or not _REF_RE.fullmatch(ref) or any(part in {".", ".."} for part in ref.split("/")):
        raise ValidationError("Invalid file reference")
    return ref


def _sign(secret: str, file_ref: str, expires: int) -> str:
    msg = f"{file_ref}|{int(expires)}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), msg, hashlib.sha256).hexdigest()


def _url_secret(cfg: Config) -> str:
    # Dev/test fallback only; Config.validate() requires a real secret in production.
    return str(cfg.FILE_URL_SECRET or "") or "dev-file-url-secret"


def verify_signature(cfg: Config, file_ref: str, expires, sig: str, *, now: Optional[float] = None) -> bool:
    try:
        exp = int(expires)
    except (TypeError, ValueError):
        return False
    if exp < int(now if now is not None else time.time()):
        return False
    expected = _sign(_url_secret(cfg), file_ref, exp)
    return hmac.compare_digest(expected, str(sig or ""))


class LocalFileStorage:
    def __init__(self, cfg: Config):
        self.cfg = cfg
        self.root = os.path.abspath(str(cfg.UPLOAD_DIR or "./uploads"))

    def path_for(self, file_ref: str) -> str:
        ref = validate_file_ref(file_ref)
        return os.path.join(self.root, *ref.split("/"))

    def put(self, data: bytes, path: str, mime_type: str = "") -> str:
        ref = validate_file_ref(path)
        out_path = self.path_for(ref)
        try:
            os.makedirs(os.path.dirname(out_path), exist_ok=True)
            with open(out_path, "wb") as f:
                f.write(data)
        except OSError as e:
            raise DependencyError(f"Could not store document: {e}") from e
        return ref

    def delete(self, file_ref: str) -> None:
        out_path = self.path_for(file_ref)
        try:
            os.remove(out_path)
        except FileNotFoundError:
            log.info("delete of missing file treated as done ref=%s", file_ref)
        except OSError as e:
            raise DependencyError(f"Could not delete document: {e}") from e

    def get_signed_access_url(self, file_ref: str, ttl_seconds: int) -> str:
        ref = validate_file_ref(file_ref)
        expires = int(time.time()) + max(1, int(ttl_seconds))
        query = urlencode({"expires": expires, "sig": _sign(_url_secret(self.cfg), ref, expires)})
        return f"/files/{quote(ref)}?{query}"


class GasFileStorage:
    def __init__(self, cfg: Config):
        self.cfg = cfg

    def put(self, data: bytes, path: str, mime_type: str = "") -> str:
        ref = validate_file_ref(path)
        return gas_upload_file(
            cfg=self.cfg,
            file_base64=base64.b64encode(data).decode("ascii"),
            file_name=ref.replace("/", "_"),
            mime_type=mime_type,
            extra={"path": ref},
        )

    def delete(self, file_ref: str) -> None:
        gas_delete_file(cfg=self.cfg, file_id=file_ref)

    def get_signed_access_url(self, file_ref: str, ttl_seconds: int) -> str:
        return gas_signed_url(cfg=self.cfg, file_id=file_ref, ttl_seconds=ttl_seconds)


def get_storage(cfg: Config):
    mode = str(cfg.FILE_STORAGE_MODE or "local").strip().lower()
    if mode == "gas":
        return GasFileStorage(cfg)
    return LocalFileStorage(cfg)
