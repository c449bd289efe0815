from __future__ import annotations

from typing import Any, Dict, cast

from flask import jsonify, request


def request_payload() -> Dict[str, Any]:
    data = request.get_json(silent=True)
    if isinstance(data, dict):
        return cast(Dict[str, Any], data)
    if request.form:
        return cast(Dict[str, Any], request.form.to_dict(flat=True))
    return {}


def json_response(payload: Dict[str, Any], status: int = 200):
    resp = jsonify(payload)
    resp.status_code = int(status)
    resp.headers.setdefault("Cache-Control", "no-store, no-cache, must-revalidate, max-age=0")
    resp.headers.setdefault("Pragma", "no-cache")
    return resp


def json_ok(payload: Dict[str, Any] | None = None, status: int = 200):
    body = dict(payload or {})
    body.setdefault("ok", True)
    return json_response(body, status)


def json_error(message: str, status: int):
    return json_response({"ok": False, "error": message}, status)
