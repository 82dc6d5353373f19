from app.core.config import Settings
from app.main import create_admin_app
from fastapi.testclient import TestClient

from conftest import API_KEY


def test_list_files(admin_client, files_dir):
    assert admin_client.get("/admin/files").json() == {"files": [], "total": 0}

    (files_dir / "test.txt").write_text("hello world\n")
    body = admin_client.get("/admin/files").json()
    assert body["total"] == 1
    entry = body["files"][0]
    assert entry["name"] == "test.txt"
    assert entry["size"] == 12
    assert entry["is_dir"] is False
    assert len(entry["modified"]) == len("2024-01-01 00:00:00")


def test_delete_file(admin_client, files_dir):
    target = files_dir / "delete_me.txt"
    target.write_bytes(b"")

    response = admin_client.delete("/admin/files/delete_me.txt")
    assert response.json() == {"success": True, "filename": "delete_me.txt"}
    assert not target.exists()

    response = admin_client.delete("/admin/files/non_existent.txt")
    assert response.status_code == 404
    assert response.json()["error"] == "File not found: non_existent.txt"


def test_delete_cannot_escape_files_dir(admin_client, files_dir, tmp_path):
    outside = tmp_path / "outside.txt"
    outside.write_text("keep")
    response = admin_client.delete("/admin/files/..%2Foutside.txt")
    assert response.status_code == 404
    assert outside.exists()


def test_batch_delete(admin_client, files_dir):
    (files_dir / "f1.txt").write_bytes(b"1")
    (files_dir / "f2.txt").write_bytes(b"2")

    response = admin_client.post("/admin/batch-delete", json={"filenames": ["f1.txt", "f2.txt", "f3.txt"]})
    body = response.json()
    assert body["total"] == 3
    assert body["successful"] == 2
    assert body["failed"] == 1
    assert body["results"][2]["filename"] == "f3.txt"
    assert body["results"][2]["success"] is False
    assert body["results"][2]["error"]
    assert not (files_dir / "f1.txt").exists()


def test_stats(admin_client, files_dir):
    (files_dir / "file1.txt").write_bytes(b"12345")
    (files_dir / "file2.txt").write_bytes(b"1234567890")
    (files_dir / "subdir").mkdir()

    body = admin_client.get("/admin/stats").json()
    assert body["total_files"] == 2
    assert body["total_size"] == 15
    assert body["files_dir"].endswith("files")


def test_health(admin_client):
    body = admin_client.get("/admin/health").json()
    assert body["status"] == "healthy"
    assert "timestamp" in body


def test_security_headers(admin_client):
    response = admin_client.get("/admin/health")
    assert response.headers["x-content-type-options"] == "nosniff"
    assert response.headers["x-frame-options"] == "DENY"
    assert "default-src 'self'" in response.headers["content-security-policy"]


def test_rate_limit(files_dir, executor):
    config = Settings(
        FILES_DIR=str(files_dir),
        ADMIN_API_KEY=API_KEY,
        RATE_LIMIT_PER_MINUTE=1,
        RATE_LIMIT_BURST=3,
        _env_file=None,
    )
    with TestClient(create_admin_app(config, executor=executor)) as client:
        codes = [client.get("/admin/health", headers={"X-API-Key": API_KEY}).status_code for _ in range(5)]
    assert codes[:3] == [200, 200, 200]
    assert codes[3:] == [429, 429]


def test_body_limit(admin_client):
    response = admin_client.post(
        "/admin/upload",
        content=b"x" * (1024 * 1024 + 1),
        headers={"Content-Type": "application/octet-stream"},
    )
    assert response.status_code == 413


def test_cors_preflight(admin_client):
    response = admin_client.options("/admin/files", headers={
        "Origin": "http://localhost:3000",
        "Access-Control-Request-Method": "DELETE",
    })
    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] == "http://localhost:3000"
