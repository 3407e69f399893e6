import os

import mongomock
import pytest
from botocore.exceptions import ClientError

os.environ["DATABASE_URL"] = "mongodb://localhost:27017"
os.environ["DATABASE_NAME"] = "bookmanagement_test"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["ENVIRONMENT"] = "test"

# database.py builds its client at import time; make it an in-memory one
with mongomock.patch(servers=(("localhost", 27017),)):
    import database  # noqa: E402

from fastapi.testclient import TestClient  # noqa: E402

from backup import get_backup_service, BackupService  # noqa: E402
from images import ImageService, get_image_service  # noqa: E402
from main import app  # noqa: E402
from routers import search as search_routes  # noqa: E402
from search import get_search_service  # noqa: E402


class FakeSearchService:
    def __init__(self):
        self.indexed = {}
        self.deleted = []
        self.queries = []
        self.result = {"total": 0, "books": [], "page": 1, "totalPages": 0}

    def sync_book(self, book):
        self.indexed[str(book["_id"])] = book

    def unsync_book(self, book_id):
        self.deleted.append(str(book_id))

    def search(self, params):
        self.queries.append(params)
        return {**self.result, "page": params.page}

    def suggest(self, query, limit=5):
        self.queries.append((query, limit))
        return {"titles": [], "authors": []}


class FakeUploader:
    def __init__(self):
        self.uploaded = []
        self.destroyed = []

    def upload(self, content, **options):
        self.uploaded.append((content, options))
        n = len(self.uploaded)
        return {"secure_url": f"https://res.cloudinary.com/demo/image/upload/cover{n}.jpg", "public_id": f"book-management/cover{n}"}

    def destroy(self, public_id):
        self.destroyed.append(public_id)
        return {"result": "ok"}


class FakeS3:
    def __init__(self, fail=False):
        self.objects = {}
        self.fail = fail

    def upload_file(self, path, bucket, key):
        if self.fail:
            raise RuntimeError("S3 unavailable")
        with open(path, "rb") as fh:
            self.objects[(bucket, key)] = fh.read()

    def download_file(self, bucket, key, path):
        if (bucket, key) not in self.objects:
            raise ClientError({"Error": {"Code": "404", "Message": "Not Found"}}, "HeadObject")
        with open(path, "wb") as fh:
            fh.write(self.objects[(bucket, key)])


@pytest.fixture(autouse=True)
def clean_db():
    for name in database.db.list_collection_names():
        database.db.drop_collection(name)
    yield


@pytest.fixture
def fake_search():
    return FakeSearchService()


@pytest.fixture
def fake_uploader():
    return FakeUploader()


@pytest.fixture
def fake_s3():
    return FakeS3()


@pytest.fixture
def backup_service(tmp_path, fake_s3):
    return BackupService(backup_dir=str(tmp_path / "backups"), bucket="test-bucket", s3_client=fake_s3)


@pytest.fixture
def client(fake_search, fake_uploader, backup_service):
    app.dependency_overrides[get_search_service] = lambda: fake_search
    app.dependency_overrides[get_image_service] = lambda: ImageService(uploader=fake_uploader)
    app.dependency_overrides[get_backup_service] = lambda: backup_service
    search_routes.limiter.reset()
    yield TestClient(app)
    app.dependency_overrides.clear()


def register(client, name="Reader", email="reader@example.com", password="secret123"):
    resp = client.post("/api/auth/register", json={"name": name, "email": email, "password": password})
    assert resp.status_code == 201, resp.text
    body = resp.json()
    return {"Authorization": f"Bearer {body['access_token']}"}, body["user"]


def make_admin(user_id):
    database.db["user"].update_one({"_id": database.parse_object_id(user_id)}, {"$set": {"role": "admin"}})


@pytest.fixture
def auth(client):
    headers, user = register(client)
    return headers, user


@pytest.fixture
def admin_auth(client):
    headers, user = register(client, name="Admin", email="admin@example.com")
    make_admin(user["_id"])
    return headers, user
