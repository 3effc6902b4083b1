"""API tests with TestClient: health, auth, clipboard, files, shares."""

import os
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from clipshare.items.cursor import Cursor
from clipshare.main import app

PASSWORD = os.environ["CLIPSHARE_PASSWORD"]
AUTH = {"Authorization": f"Bearer {PASSWORD}"}


@pytest.fixture
def client(session_factory):
    """TestClient for the FastAPI app on empty tables. Context manager so lifespan runs."""
    with TestClient(app) as c:
        yield c


def _create_text(client: TestClient, content: str) -> dict:
    r = client.post("/api/clipboard", data={"type": "TEXT", "content": content}, headers=AUTH)
    assert r.status_code == 201, r.text
    return r.json()


def _share(client: TestClient, item_id: str, **body) -> dict:
    r = client.post("/api/share", json={"itemId": item_id, **body}, headers=AUTH)
    assert r.status_code == 201, r.text
    return r.json()


def test_health(client: TestClient) -> None:
    """GET /health and /api/healthz answer without auth."""
    assert client.get("/health").json() == {"status": "ok"}
    assert client.get("/api/healthz").json() == {"ok": True}


def test_protected_routes_require_auth(client: TestClient) -> None:
    for path in ("/api/clipboard", "/api/share", "/api/events", "/api/files/x"):
        r = client.get(path)
        assert r.status_code == 401, path
    r = client.get("/api/clipboard", headers={"Authorization": "Bearer wrong"})
    assert r.status_code == 401


def test_password_not_configured(client: TestClient, monkeypatch) -> None:
    monkeypatch.setenv("CLIPSHARE_PASSWORD", "")
    r = client.get("/api/clipboard", headers=AUTH)
    assert r.status_code == 500
    assert r.json()["detail"] == "Authentication not configured on server"


def test_verify_sets_cookie_and_returns_token(client: TestClient) -> None:
    """POST /api/auth/verify with the shared password issues a session cookie."""
    assert client.post("/api/auth/verify", json={"password": "wrong"}).status_code == 401
    r = client.post("/api/auth/verify", json={"password": PASSWORD})
    assert r.status_code == 200
    data = r.json()
    assert data["success"] is True
    assert data["token_type"] == "bearer"
    assert data["expires_in"] > 0
    assert "auth" in r.cookies
    # Cookie alone authenticates
    assert client.get("/api/clipboard").status_code == 200
    # So does the returned token
    fresh = TestClient(app)
    r = fresh.get("/api/clipboard", headers={"Authorization": f"Bearer {data['access_token']}"})
    assert r.status_code == 200


def test_logout_clears_cookie(client: TestClient) -> None:
    client.post("/api/auth/verify", json={"password": PASSWORD})
    assert client.post("/api/auth/logout").status_code == 200
    assert client.get("/api/clipboard").status_code == 401


def test_create_and_list(client: TestClient) -> None:
    """Create A then B; page of one returns B with a cursor leading to A."""
    a = _create_text(client, "hello")
    b = _create_text(client, "world")
    assert a["sortWeight"] == 1 and b["sortWeight"] == 2
    assert a["type"] == "TEXT"
    assert a["createdAt"].endswith("Z")

    r = client.get("/api/clipboard", params={"take": 1}, headers=AUTH)
    page = r.json()
    assert [i["id"] for i in page["items"]] == [b["id"]]
    assert page["hasMore"] is True

    r = client.get("/api/clipboard", params={"take": 1, "cursor": page["nextCursor"]}, headers=AUTH)
    page = r.json()
    assert [i["id"] for i in page["items"]] == [a["id"]]
    assert page["hasMore"] is False
    assert page["nextCursor"] is None


def test_list_legacy_cursor_and_search(client: TestClient) -> None:
    a = _create_text(client, "apple pie")
    b = _create_text(client, "banana")
    r = client.get(
        "/api/clipboard",
        params={"cursorSortWeight": b["sortWeight"], "cursorCreatedAt": b["createdAt"], "cursorId": b["id"]},
        headers=AUTH,
    )
    assert [i["id"] for i in r.json()["items"]] == [a["id"]]
    r = client.get("/api/clipboard", params={"search": "banana"}, headers=AUTH)
    assert [i["id"] for i in r.json()["items"]] == [b["id"]]


def test_invalid_cursor_is_bad_request(client: TestClient) -> None:
    r = client.get("/api/clipboard", params={"cursor": "garbage!"}, headers=AUTH)
    assert r.status_code == 400
    huge = Cursor(sort_weight=10**30, created_at=1, id="x").encode()
    r = client.get("/api/clipboard", params={"cursor": huge}, headers=AUTH)
    assert r.status_code == 400
    assert r.json()["detail"] == "Invalid cursor"


def test_create_validation(client: TestClient) -> None:
    r = client.post("/api/clipboard", data={"type": "TEXT", "content": ""}, headers=AUTH)
    assert r.status_code == 400
    r = client.post("/api/clipboard", data={"type": "VIDEO", "content": "x"}, headers=AUTH)
    assert r.status_code == 400


def test_get_and_delete_item(client: TestClient) -> None:
    a = _create_text(client, "bye")
    share = _share(client, a["id"])
    r = client.get(f"/api/clipboard/{a['id']}", headers=AUTH)
    assert r.json()["content"] == "bye"
    r = client.delete(f"/api/clipboard/{a['id']}", headers=AUTH)
    assert r.json() == {"ok": True}
    assert client.get(f"/api/share/{share['token']}/file").status_code == 404
    assert client.get(f"/api/clipboard/{a['id']}", headers=AUTH).status_code == 404
    assert client.delete(f"/api/clipboard/{a['id']}", headers=AUTH).status_code == 404


def test_small_file_upload_inline(client: TestClient) -> None:
    r = client.post(
        "/api/clipboard",
        data={"type": "IMAGE"},
        files={"file": ("dot.png", b"\x89PNG-small", "image/png")},
        headers=AUTH,
    )
    assert r.status_code == 201
    item = r.json()
    assert item["fileName"] == "dot.png"
    assert item["fileSize"] == 10
    assert item["contentType"] == "image/png"
    r = client.get(f"/api/files/{item['id']}", headers=AUTH)
    assert r.status_code == 200
    assert r.content == b"\x89PNG-small"
    assert r.headers["content-type"] == "image/png"
    assert r.headers["content-disposition"].startswith("inline;")
    assert "immutable" in r.headers["cache-control"]


def test_large_file_upload_spills_to_disk(client: TestClient) -> None:
    """Payload over the inline threshold is written under uploads/ and served back intact."""
    payload = os.urandom(300 * 1024)
    r = client.post(
        "/api/clipboard",
        data={"type": "FILE"},
        files={"file": ("big.bin", payload, "application/octet-stream")},
        headers=AUTH,
    )
    assert r.status_code == 201
    item = r.json()
    assert item["fileSize"] == len(payload)
    uploads = Path(os.environ["CLIPSHARE_DATA_DIR"]) / "uploads"
    assert any(p.suffix == ".bin" for p in uploads.iterdir())
    r = client.get(f"/api/files/{item['id']}", params={"download": "1"}, headers=AUTH)
    assert r.content == payload
    assert r.headers["content-disposition"].startswith("attachment;")


def test_body_too_large(client: TestClient, monkeypatch) -> None:
    monkeypatch.setenv("CLIPSHARE_MAX_UPLOAD_BYTES", "10")
    r = client.post("/api/clipboard", data={"type": "TEXT", "content": "x" * 100}, headers=AUTH)
    assert r.status_code == 413


def test_reorder(client: TestClient) -> None:
    a = _create_text(client, "a")
    b = _create_text(client, "b")
    r = client.post("/api/clipboard/reorder", json={"ids": [a["id"], b["id"]]}, headers=AUTH)
    assert r.status_code == 200
    assert r.json() == {"ok": True, "weights": {a["id"]: 4, b["id"]: 3}}
    r = client.get("/api/clipboard", headers=AUTH)
    assert [i["id"] for i in r.json()["items"]] == [a["id"], b["id"]]
    r = client.post("/api/clipboard/reorder", json={"ids": []}, headers=AUTH)
    assert r.status_code == 400


def test_share_single_download(client: TestClient) -> None:
    """Share with maxDownloads=1: first download returns the text, second is 404."""
    a = _create_text(client, "hello")
    share = _share(client, a["id"], maxDownloads=1)
    assert share["url"].endswith(share["token"])
    assert share["requiresPassword"] is False

    public = TestClient(app)
    meta = public.get(f"/api/share/{share['token']}").json()
    assert meta["item"]["content"] == "hello"
    assert meta["authorized"] is True
    r = public.get(f"/api/share/{share['token']}/download")
    assert r.status_code == 200
    assert r.text == "hello"
    assert r.headers["content-disposition"].startswith("attachment;")
    assert public.get(f"/api/share/{share['token']}/download").status_code == 404
    assert public.get(f"/api/share/{share['token']}").status_code == 404


def test_share_password_flow(client: TestClient) -> None:
    a = _create_text(client, "secret text")
    share = _share(client, a["id"], password="pw")
    token = share["token"]
    assert share["requiresPassword"] is True

    public = TestClient(app)
    meta = public.get(f"/api/share/{token}").json()
    assert meta["authorized"] is False
    assert meta["item"]["content"] is None
    assert public.get(f"/api/share/{token}/file").status_code == 401
    assert public.post(f"/api/share/{token}/verify", json={"password": "nope"}).status_code == 401
    assert public.post(f"/api/share/{token}/verify", json={}).status_code == 400

    r = public.post(f"/api/share/{token}/verify", json={"password": "pw"})
    assert r.status_code == 200
    assert f"share_auth_{token}" in r.cookies
    credential = r.json()["credential"]
    assert public.get(f"/api/share/{token}").json()["item"]["content"] == "secret text"
    r = public.get(f"/api/share/{token}/file")
    assert r.status_code == 200
    assert r.text == "secret text"

    # Bearer credential works without the cookie, and only for this link
    other = _share(client, a["id"], password="pw")
    fresh = TestClient(app)
    bearer = {"Authorization": f"Bearer {credential}"}
    assert fresh.get(f"/api/share/{token}/file", headers=bearer).status_code == 200
    assert fresh.get(f"/api/share/{other['token']}/file", headers=bearer).status_code == 401


def test_share_management(client: TestClient) -> None:
    a = _create_text(client, "x")
    keep = _share(client, a["id"])
    gone = _share(client, a["id"])
    assert client.post(f"/api/share/{gone['token']}/revoke", headers=AUTH).json() == {"ok": True}

    r = client.get("/api/share", params={"itemId": a["id"]}, headers=AUTH)
    body = r.json()
    assert [e["token"] for e in body["data"]] == [keep["token"]]
    assert body["page"] == 1 and body["pageSize"] == 20

    r = client.get("/api/share", params={"itemId": a["id"], "includeRevoked": "1"}, headers=AUTH)
    statuses = {e["token"]: e["status"] for e in r.json()["data"]}
    assert statuses == {keep["token"]: "active", gone["token"]: "revoked"}

    # Publicly the revoked link looks exactly like an unknown one
    public = TestClient(app)
    revoked = public.get(f"/api/share/{gone['token']}")
    unknown = public.get("/api/share/does-not-exist")
    assert revoked.status_code == unknown.status_code == 404
    assert revoked.json() == unknown.json()

    assert client.delete(f"/api/share/{keep['token']}", headers=AUTH).json() == {"ok": True}
    assert client.delete(f"/api/share/{keep['token']}", headers=AUTH).status_code == 404


def test_share_for_missing_item(client: TestClient) -> None:
    r = client.post("/api/share", json={"itemId": "missing"}, headers=AUTH)
    assert r.status_code == 404


def test_share_of_file_item_counts_inline_views(client: TestClient) -> None:
    r = client.post(
        "/api/clipboard",
        data={"type": "FILE"},
        files={"file": ("n.txt", b"notes", "text/plain")},
        headers=AUTH,
    )
    share = _share(client, r.json()["id"], maxDownloads=2)
    public = TestClient(app)
    assert public.get(f"/api/share/{share['token']}/file").content == b"notes"
    assert public.get(f"/api/share/{share['token']}/download").content == b"notes"
    assert public.get(f"/api/share/{share['token']}/file").status_code == 404


def test_security_headers(client: TestClient) -> None:
    r = client.get("/health")
    assert r.headers["x-content-type-options"] == "nosniff"
    assert r.headers["x-frame-options"] == "DENY"
