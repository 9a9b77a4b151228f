"""JSON API for storing and retrieving clipboard entries."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Mapping, Optional, Union

from flask import Flask, jsonify, request
from werkzeug.exceptions import HTTPException
from werkzeug.wrappers import Response

from database import (
    DuplicateEntryError,
    EntryError,
    EntryNotEncryptedError,
    EntryNotFoundError,
    InvalidEntryError,
    KeyMismatchError,
    add_entry,
    count_entries,
    delete_entry,
    fetch_entries,
    get_entry,
    init_db,
    unlock_entry,
)

SECRET_KEY = os.getenv("CLIPBOARD_SECRET_KEY", "dev-secret-key-change-me")
MAX_LIST_LIMIT = 500

ERROR_STATUS = {
    InvalidEntryError: 400,
    KeyMismatchError: 403,
    EntryNotFoundError: 404,
    DuplicateEntryError: 409,
    EntryNotEncryptedError: 409,
}

app = Flask(__name__)
app.config["SECRET_KEY"] = SECRET_KEY


def _error(message: str, status: int) -> tuple[Response, int]:
    return jsonify({"error": message}), status


def _json_body() -> Mapping[str, Any]:
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise InvalidEntryError("Request body must be a JSON object.")
    return payload


def _optional_text(payload: Mapping[str, Any], *names: str) -> Optional[str]:
    for name in names:
        value = payload.get(name)
        if value is None:
            continue
        if not isinstance(value, str):
            raise InvalidEntryError(f"Field {name!r} must be a string.")
        return value
    return None


def _parse_flag(raw: Optional[str]) -> Optional[bool]:
    if raw is None or raw == "":
        return None
    lowered = raw.strip().lower()
    if lowered in {"1", "true", "yes"}:
        return True
    if lowered in {"0", "false", "no"}:
        return False
    raise InvalidEntryError("encrypted must be true or false.")


def _required_id() -> str:
    entry_id = request.args.get("id") or ""
    if not entry_id:
        raise InvalidEntryError("Query parameter 'id' is required.")
    return entry_id


@app.errorhandler(EntryError)
def handle_entry_error(exc: EntryError):
    status = next((code for kind, code in ERROR_STATUS.items() if isinstance(exc, kind)), 500)
    if status == 500:
        app.logger.error("Unhandled entry error: %s", exc)
    return _error(str(exc), status)


@app.errorhandler(Exception)
def handle_unexpected(exc: Exception):
    if isinstance(exc, HTTPException):
        return _error(exc.description or exc.name, exc.code or 500)
    app.logger.exception("Request failed: %s %s", request.method, request.path)
    return _error("Internal server error.", 500)


@app.post("/api/add")
def add():
    """Store a new entry, optionally locked behind a password."""
    payload = _json_body()
    content = payload.get("content")
    if not isinstance(content, str):
        raise InvalidEntryError("Field 'content' is required and must be a string.")

    entry = add_entry(
        content,
        entry_id=_optional_text(payload, "id"),
        key=_optional_text(payload, "password", "key"),
    )
    app.logger.info("Added entry %s", entry["id"])
    return jsonify(entry), 201


@app.get("/api/get")
def get():
    """Return a single entry; encrypted entries come back with content withheld."""
    entry_id = _required_id()
    entry = get_entry(entry_id)
    if entry is None:
        raise EntryNotFoundError(entry_id)
    return jsonify(entry)


@app.get("/api/entries")
def entries():
    limit_raw = request.args.get("limit")
    limit: Optional[int] = None
    if limit_raw:
        try:
            limit = min(int(limit_raw), MAX_LIST_LIMIT)
        except ValueError:
            raise InvalidEntryError("limit must be an integer.") from None
    return jsonify(fetch_entries(encrypted=_parse_flag(request.args.get("encrypted")), limit=limit))


@app.post("/api/decrypt")
def decrypt():
    """Return the plain content of an encrypted entry when the password matches."""
    entry_id = _required_id()
    password = _optional_text(_json_body(), "password", "key")
    if not password:
        raise InvalidEntryError("Field 'password' is required.")
    content = unlock_entry(entry_id, password)
    return Response(content, status=200, mimetype="text/plain")


@app.delete("/api/entries/<entry_id>")
def remove(entry_id: str):
    if not delete_entry(entry_id):
        raise EntryNotFoundError(entry_id)
    app.logger.info("Deleted entry %s", entry_id)
    return "", 204


@app.get("/api/health")
def health():
    return jsonify({"status": "ok", "entries": count_entries()})


def create_app(db_path: Union[str, Path, None] = None, *, if_not_exists: bool = True) -> Flask:
    """Ensure the schema exists before serving and return the configured app."""

    database_path = init_db(db_path, if_not_exists=if_not_exists)
    app.config["DATABASE_PATH"] = str(database_path)
    return app


if __name__ == "__main__":
    create_app().run(debug=os.getenv("FLASK_DEBUG") == "1")
