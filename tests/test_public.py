def test_serves_files(public_client, files_dir):
    (files_dir / "hello.txt").write_text("hello public")
    response = public_client.get("/hello.txt")
    assert response.status_code == 200
    assert response.text == "hello public"
    assert response.headers["x-frame-options"] == "DENY"


def test_missing_file(public_client):
    assert public_client.get("/nothing-here.txt").status_code == 404


def test_staging_area_is_hidden(public_client, files_dir):
    staging = files_dir / ".chunks" / "some-upload"
    staging.mkdir(parents=True)
    (staging / "chunk_0").write_bytes(b"secret")
    assert public_client.get("/.chunks/some-upload/chunk_0").status_code == 404


def test_public_server_is_read_only(public_client):
    assert public_client.post("/hello.txt", content=b"x").status_code == 405


def test_large_responses_are_compressed(public_client, files_dir):
    (files_dir / "big.txt").write_text("a" * 5000)
    response = public_client.get("/big.txt", headers={"Accept-Encoding": "gzip"})
    assert response.headers.get("content-encoding") == "gzip"
    assert response.text == "a" * 5000
