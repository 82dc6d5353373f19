import concurrent.futures

import pytest
from fastapi.testclient import TestClient

from app.core.config import Settings
from app.main import create_admin_app, create_public_app
from app.services.storage.internal import InternalStorage
from app.services.upload_service import UploadService

API_KEY = "test-secret"


@pytest.fixture
def executor():
    pool = concurrent.futures.ThreadPoolExecutor(max_workers=8)
    yield pool
    pool.shutdown(wait=True)


@pytest.fixture
def files_dir(tmp_path):
    path = tmp_path / "files"
    path.mkdir()
    return path


@pytest.fixture
def chunks_dir(files_dir):
    path = files_dir / ".chunks"
    path.mkdir()
    return path


@pytest.fixture
def storage(chunks_dir, executor):
    return InternalStorage(str(chunks_dir), executor=executor)


@pytest.fixture
def upload_service(storage, files_dir):
    return UploadService(storage, str(files_dir))


@pytest.fixture
def test_settings(files_dir):
    return Settings(
        FILES_DIR=str(files_dir),
        ADMIN_API_KEY=API_KEY,
        RATE_LIMIT_PER_MINUTE=6000,
        RATE_LIMIT_BURST=10000,
        MAX_UPLOAD_SIZE=1024 * 1024,
        _env_file=None,
    )


@pytest.fixture
def admin_client(test_settings, executor):
    app = create_admin_app(test_settings, executor=executor)
    with TestClient(app) as client:
        client.headers.update({"X-API-Key": API_KEY})
        yield client


@pytest.fixture
def public_client(test_settings):
    with TestClient(create_public_app(test_settings)) as client:
        yield client
