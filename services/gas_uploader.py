from __future__ import annotations

import json
import logging
from typing import Any

import requests

from config import Config
from errors import DependencyError
from utils import safe_json_string

log = logging.getLogger("storage")


def _parse_json_maybe(text: str) -> Any:
    s = str(text or "").strip()
    if not s:
        return None
    try:
        return json.loads(s)
    except Exception:
        return None


def _extract_field(obj: Any, keys: tuple[str, ...]) -> str:
    if isinstance(obj, dict):
        for key in keys:
            v = str(obj.get(key) or "").strip()
            if v:
                return v
        data = obj.get("data")
        if isinstance(data, dict):
            for key in keys:
                v = str(data.get(key) or "").strip()
                if v:
                    return v
    return ""


def _gas_call(cfg: Config, payload: dict[str, Any]) -> Any:
    url = str(cfg.GAS_UPLOAD_URL or "").strip()
    if not url:
        raise DependencyError("GAS_UPLOAD_URL is not configured (set FILE_STORAGE_MODE=local or provide GAS_UPLOAD_URL)")

    fmt = str(cfg.GAS_UPLOAD_REQUEST_FORMAT or "json").strip().lower()
    if fmt not in {"json", "form"}:
        raise DependencyError(f"Invalid GAS_UPLOAD_REQUEST_FORMAT: {fmt} (expected 'json' or 'form')")

    body = dict(payload)
    if cfg.GAS_UPLOAD_FOLDER_ID:
        body["folderId"] = cfg.GAS_UPLOAD_FOLDER_ID
    # Apps Script cannot always read custom headers, so the key travels in the body too.
    headers: dict[str, str] = {}
    if cfg.GAS_UPLOAD_API_KEY:
        body["apiKey"] = cfg.GAS_UPLOAD_API_KEY
        headers["X-Api-Key"] = cfg.GAS_UPLOAD_API_KEY

    try:
        if fmt == "form":
            resp = requests.post(url, data=body, headers=headers, timeout=cfg.GAS_UPLOAD_TIMEOUT_SECONDS)
        else:
            resp = requests.post(url, json=body, headers=headers, timeout=cfg.GAS_UPLOAD_TIMEOUT_SECONDS)
    except requests.RequestException as e:
        raise DependencyError(f"Document storage unreachable: {e}") from e

    raw_text = str(resp.text or "")
    try:
        parsed = resp.json()
    except ValueError:
        parsed = _parse_json_maybe(raw_text)

    if resp.status_code >= 400:
        snippet = raw_text.strip()[:500]
        raise DependencyError(f"Document storage failed (HTTP {resp.status_code}): {snippet or 'no response body'}")

    if isinstance(parsed, dict) and parsed.get("ok") is False:
        err_obj = parsed.get("error") if isinstance(parsed.get("error"), dict) else {}
        msg = str((err_obj or {}).get("message") or "").strip() or "Document storage rejected the request"
        raise DependencyError(msg)

    return parsed


def gas_upload_file(*, cfg: Config, file_base64: str, file_name: str, mime_type: str, extra: dict[str, Any] | None = None) -> str:
    payload: dict[str, Any] = {
        "action": "upload",
        "fileBase64": str(file_base64 or "").strip(),
        "fileName": str(file_name or "").strip(),
        "mimeType": str(mime_type or "").strip() or "application/octet-stream",
    }
    if extra:
        payload.update(extra)

    parsed = _gas_call(cfg, payload)
    file_id = _extract_field(parsed, ("fileId", "driveFileId", "id"))
    if not file_id:
        log.warning("GAS upload response missing fileId: %s", safe_json_string(parsed, fallback=""))
        raise DependencyError("Document storage accepted the upload but returned no fileId")
    return file_id


def gas_delete_file(*, cfg: Config, file_id: str) -> None:
    _gas_call(cfg, {"action": "delete", "fileId": str(file_id or "").strip()})


def gas_signed_url(*, cfg: Config, file_id: str, ttl_seconds: int) -> str:
    parsed = _gas_call(cfg, {"action": "signedUrl", "fileId": str(file_id or "").strip(), "ttlSeconds": int(ttl_seconds)})
    url = _extract_field(parsed, ("url", "signedUrl"))
    if not url:
        raise DependencyError("Document storage returned no URL")
    return url
