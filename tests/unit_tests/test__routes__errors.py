import pytest
from fastapi import status
from fastapi.testclient import TestClient

from files_agent.adapters.storage import BackendRegistry, IpfsStorageBackend
from files_agent.main import create_app
from files_agent.settings import Settings
from tests.consts import ADMIN, EDITOR, OWNER, READER, TEST_DOMAIN
from tests.fixtures.identity import StubIdentityProvider
from tests.fixtures.ipfs import FakeIpfsSession


def as_identity(identity):
    return {"X-Identity-Address": identity}


def upload(client, content=b"0123456789", folder="", identity=OWNER):
    return client.post(
        "/api/upload",
        files={"file": ("a.txt", content, "text/plain")},
        data={"folder": folder},
        headers=as_identity(identity) if identity else {},
    )


def assert_error(response, status_code, kind):
    assert response.status_code == status_code
    body = response.json()
    assert body["kind"] == kind
    assert body["error"]
    return body


def test_upload_without_identity_is_unauthenticated(client: TestClient):
    assert_error(upload(client, identity=None), status.HTTP_401_UNAUTHORIZED, "unauthenticated")


def test_upload_as_reader_is_forbidden(client: TestClient):
    assert_error(upload(client, identity=READER), status.HTTP_403_FORBIDDEN, "forbidden")


def test_upload_without_file_is_invalid(client: TestClient):
    response = client.post("/api/upload", data={"folder": ""}, headers=as_identity(OWNER))

    assert_error(response, status.HTTP_400_BAD_REQUEST, "invalid_input")


def test_upload_into_malformed_folder_is_invalid(client: TestClient):
    assert_error(upload(client, folder="bad folder"), status.HTTP_400_BAD_REQUEST, "invalid_input")


def test_upload_over_limit_is_rejected(settings, identity_provider):
    settings = settings.model_copy(update={"max_upload_bytes": 5})

    with TestClient(create_app(settings, identity_provider=identity_provider)) as client:
        response = upload(client, content=b"0123456789")
        assert_error(response, status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, "payload_too_large")

        # nothing was indexed
        assert client.get("/api/list").json()["files"] == []


def test_backend_rejection_returns_details_and_writes_nothing(settings, identity_provider):
    backend = IpfsStorageBackend(
        TEST_DOMAIN,
        api_url="https://ipfs.example/api/v0",
        gateway="https://gateway.example",
        session=FakeIpfsSession(max_size=4),
    )
    app = create_app(
        settings,
        backends=BackendRegistry(lambda domain: backend),
        identity_provider=identity_provider,
    )

    with TestClient(app) as client:
        response = upload(client)
        body = assert_error(response, status.HTTP_500_INTERNAL_SERVER_ERROR, "backend_failure")
        assert "413" in body["details"]
        assert body["size"] == 10

        assert client.get("/api/list").json()["files"] == []


def test_ipfs_download_redirects_to_gateway(settings, identity_provider):
    backend = IpfsStorageBackend(
        TEST_DOMAIN,
        api_url="https://ipfs.example/api/v0",
        gateway="https://gateway.example",
        session=FakeIpfsSession(),
    )
    app = create_app(
        settings,
        backends=BackendRegistry(lambda domain: backend),
        identity_provider=identity_provider,
    )

    with TestClient(app) as client:
        record = upload(client).json()
        response = client.get(f"/api/file/{record['id']}/download", follow_redirects=False)

        assert response.status_code == status.HTTP_307_TEMPORARY_REDIRECT
        assert response.headers["location"] == record["contentUrl"]


def test_create_folder_with_invalid_name(client: TestClient):
    response = client.post("/api/folder", json={"name": "My Folder"}, headers=as_identity(EDITOR))

    assert_error(response, status.HTTP_400_BAD_REQUEST, "invalid_input")


def test_create_folder_missing_name_is_invalid(client: TestClient):
    response = client.post("/api/folder", json={}, headers=as_identity(EDITOR))

    assert_error(response, status.HTTP_400_BAD_REQUEST, "invalid_input")


def test_create_folder_as_reader_is_forbidden(client: TestClient):
    response = client.post("/api/folder", json={"name": "reports"}, headers=as_identity(READER))

    assert_error(response, status.HTTP_403_FORBIDDEN, "forbidden")


def test_delete_folder_as_editor_is_forbidden(client: TestClient):
    response = client.delete("/api/folder", params={"path": "reports"}, headers=as_identity(EDITOR))

    assert_error(response, status.HTTP_403_FORBIDDEN, "forbidden")


def test_delete_non_empty_folder_reports_file_count(client: TestClient):
    upload(client, folder="docs")

    response = client.delete("/api/folder", params={"path": "docs"}, headers=as_identity(ADMIN))

    body = assert_error(response, status.HTTP_400_BAD_REQUEST, "conflict")
    assert body["fileCount"] == 1


def test_download_unknown_file_is_not_found(client: TestClient):
    response = client.get(f"/api/file/{'0' * 32}/download")

    assert_error(response, status.HTTP_404_NOT_FOUND, "not_found")


def test_download_path_like_id_is_not_found(client: TestClient):
    response = client.get("/api/file/..%2Findex/download")

    assert response.status_code == status.HTTP_404_NOT_FOUND


def test_delete_without_identity_is_unauthenticated(client: TestClient):
    file_id = upload(client).json()["id"]

    response = client.delete(f"/api/file/{file_id}")

    assert_error(response, status.HTTP_401_UNAUTHORIZED, "unauthenticated")


def test_delete_by_non_owner_is_forbidden(client: TestClient):
    file_id = upload(client, identity=OWNER).json()["id"]

    response = client.delete(f"/api/file/{file_id}", headers=as_identity(EDITOR))

    assert_error(response, status.HTTP_403_FORBIDDEN, "forbidden")
    assert [f["id"] for f in client.get("/api/list").json()["files"]] == [file_id]


def test_identity_provider_outage_degrades_to_read_only(settings):
    app = create_app(settings, identity_provider=StubIdentityProvider(available=False))

    with TestClient(app) as client:
        assert_error(upload(client, identity=ADMIN), status.HTTP_403_FORBIDDEN, "forbidden")
        assert client.get("/api/list").status_code == status.HTTP_200_OK


@pytest.mark.parametrize("prefix", ["/agent/files", "agent/files/"])
def test_routes_honour_mount_prefix(settings, identity_provider, prefix):
    settings = Settings(**{**settings.model_dump(), "mount_prefix": prefix})
    assert settings.mount_prefix == "/agent/files"

    with TestClient(create_app(settings, identity_provider=identity_provider)) as client:
        assert client.get("/agent/files/api/list").status_code == status.HTTP_200_OK
        assert client.get("/agent/files/status").status_code == status.HTTP_200_OK
        assert client.get("/api/list").status_code == status.HTTP_404_NOT_FOUND


def test_identity_header_ignored_unless_trusted(settings, identity_provider):
    with TestClient(create_app(settings, identity_provider=identity_provider)) as client:
        file_id = upload(client, identity=OWNER).json()["id"]

    untrusted = settings.model_copy(update={"trust_identity_header": False})
    with TestClient(create_app(untrusted, identity_provider=identity_provider)) as client:
        response = client.delete(f"/api/file/{file_id}", headers=as_identity(ADMIN))
        assert_error(response, status.HTTP_401_UNAUTHORIZED, "unauthenticated")

        assert_error(upload(client, identity=ADMIN), status.HTTP_401_UNAUTHORIZED, "unauthenticated")
        assert [f["id"] for f in client.get("/api/list").json()["files"]] == [file_id]


def test_identity_from_request_state_is_used_without_header(settings, identity_provider):
    settings = settings.model_copy(update={"trust_identity_header": False})
    app = create_app(settings, identity_provider=identity_provider)

    @app.middleware("http")
    async def authenticate(request, call_next):
        request.state.identity = OWNER
        return await call_next(request)

    with TestClient(app) as client:
        response = upload(client, identity=None)
        assert response.status_code == status.HTTP_200_OK
        assert response.json()["createdBy"] == OWNER
