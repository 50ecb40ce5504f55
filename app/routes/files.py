from __future__ import annotations

import mimetypes
import os

from flask import Blueprint, current_app, request, send_file

from errors import AuthError, NotFoundError
from services.storage import LocalFileStorage, validate_file_ref, verify_signature

files_bp = Blueprint("files", __name__)


@files_bp.get("/files/<path:file_ref>")
def files_get(file_ref: str):
    """Serves locally stored checklist attachments behind the links from getSignedAccessUrl."""
    cfg = current_app.config["CFG"]
    ref = validate_file_ref(file_ref)
    if not verify_signature(cfg, ref, request.args.get("expires"), request.args.get("sig")):
        raise AuthError("Link is invalid or has expired")

    path = LocalFileStorage(cfg).path_for(ref)
    if not os.path.isfile(path):
        raise NotFoundError("File not found")

    mime, _enc = mimetypes.guess_type(path)
    resp = send_file(path, mimetype=mime or "application/octet-stream", as_attachment=False, download_name=os.path.basename(path))
    resp.headers["X-Content-Type-Options"] = "nosniff"
    return resp
