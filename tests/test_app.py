"""Tests for the JSON API."""
import pytest

from app import create_app
from database import SchemaConflictError, get_entry


@pytest.fixture
def client(tmp_path):
    app = create_app(tmp_path / "clipboard.db")
    app.config["TESTING"] = True
    return app.test_client()


def test_create_app_rejects_rerun_when_strict(tmp_path):
    create_app(tmp_path / "clipboard.db")
    with pytest.raises(SchemaConflictError):
        create_app(tmp_path / "clipboard.db", if_not_exists=False)


def test_add_and_get(client):
    resp = client.post("/api/add", json={"id": "a1", "content": "hello"})
    assert resp.status_code == 201
    assert resp.get_json() == {"id": "a1", "content": "hello", "encrypted": False}

    resp = client.get("/api/get", query_string={"id": "a1"})
    assert resp.status_code == 200
    assert resp.get_json()["content"] == "hello"


def test_get_missing(client):
    resp = client.get("/api/get", query_string={"id": "nope"})
    assert resp.status_code == 404
    assert "nope" in resp.get_json()["error"]


def test_get_requires_id(client):
    assert client.get("/api/get").status_code == 400


def test_add_requires_content(client):
    resp = client.post("/api/add", json={"id": "x"})
    assert resp.status_code == 400


def test_add_rejects_non_json(client):
    resp = client.post("/api/add", data="content=hi")
    assert resp.status_code == 400


def test_add_duplicate(client):
    client.post("/api/add", json={"id": "a1", "content": "hello"})
    resp = client.post("/api/add", json={"id": "a1", "content": "again"})
    assert resp.status_code == 409
    assert get_entry("a1")["content"] == "hello"


def test_decrypt_flow(client):
    resp = client.post("/api/add", json={"id": "s1", "content": "secret", "password": "pw"})
    assert resp.get_json()["encrypted"] is True

    ok = client.post("/api/decrypt", query_string={"id": "s1"}, json={"password": "pw"})
    assert ok.status_code == 200
    assert ok.mimetype == "text/plain"
    assert ok.get_data(as_text=True) == "secret"

    bad = client.post("/api/decrypt", query_string={"id": "s1"}, json={"password": "nope"})
    assert bad.status_code == 403


def test_decrypt_plain_entry(client):
    client.post("/api/add", json={"id": "p1", "content": "hello"})
    resp = client.post("/api/decrypt", query_string={"id": "p1"}, json={"password": "pw"})
    assert resp.status_code == 409


def test_decrypt_missing(client):
    resp = client.post("/api/decrypt", query_string={"id": "zz"}, json={"password": "pw"})
    assert resp.status_code == 404


def test_list_and_delete(client):
    client.post("/api/add", json={"id": "a", "content": "1"})
    client.post("/api/add", json={"id": "b", "content": "2", "key": "k"})

    listed = client.get("/api/entries").get_json()
    assert [e["id"] for e in listed] == ["a", "b"]
    encrypted = client.get("/api/entries", query_string={"encrypted": "true"}).get_json()
    assert [e["id"] for e in encrypted] == ["b"]
    assert client.get("/api/entries", query_string={"limit": "x"}).status_code == 400

    assert client.delete("/api/entries/a").status_code == 204
    assert client.delete("/api/entries/a").status_code == 404
    assert client.get("/api/health").get_json() == {"status": "ok", "entries": 1}


def test_locked_entry_content_withheld(client):
    client.post("/api/add", json={"id": "s1", "content": "topsecret", "password": "pw"})

    resp = client.get("/api/get", query_string={"id": "s1"})
    assert resp.get_json() == {"id": "s1", "content": None, "encrypted": True}
    listed = client.get("/api/entries").get_json()
    assert listed == [{"id": "s1", "content": None, "encrypted": True}]
    assert b"topsecret" not in resp.data


def test_long_password(client):
    password = "k" * 100
    resp = client.post("/api/add", json={"id": "otp", "content": "x" * 100, "password": password})
    assert resp.status_code == 201

    ok = client.post("/api/decrypt", query_string={"id": "otp"}, json={"password": password})
    assert ok.status_code == 200
    assert ok.get_data(as_text=True) == "x" * 100


def test_id_with_surrounding_whitespace(client):
    assert client.post("/api/add", json={"id": " x ", "content": "padded"}).status_code == 201
    resp = client.get("/api/get", query_string={"id": " x "})
    assert resp.status_code == 200
    assert resp.get_json()["id"] == " x "
    assert client.get("/api/get", query_string={"id": "x"}).status_code == 404


def test_unknown_route_is_json(client):
    resp = client.get("/api/nope")
    assert resp.status_code == 404
    assert "error" in resp.get_json()
