import boto3
import pytest
from fastapi.testclient import TestClient
from moto import mock_aws

from files_agent.adapters.storage import BackendRegistry, StorageFactory
from files_agent.main import create_app
from files_agent.metadata import JsonMetadataStore
from files_agent.permissions import AclPermissionGate
from files_agent.service import FilesService
from files_agent.settings import Settings
from tests.consts import TEST_BUCKET_NAME
from tests.fixtures.identity import StubIdentityProvider


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        storage_backend="local",
        storage_dir=str(tmp_path / "storage"),
        metadata_backend="json",
        data_dir=str(tmp_path / "data"),
        sqlite_path=str(tmp_path / "files_agent.db"),
        permission_mode="acl",
        identity_url=None,
        trust_identity_header=True,
        s3_bucket_name=TEST_BUCKET_NAME,
    )


@pytest.fixture
def identity_provider() -> StubIdentityProvider:
    return StubIdentityProvider()


@pytest.fixture
def service(settings, identity_provider) -> FilesService:
    return FilesService(
        metadata=JsonMetadataStore(settings.data_dir),
        backends=BackendRegistry(StorageFactory(settings).create),
        permissions=AclPermissionGate(identity_provider, settings.agent_id),
    )


@pytest.fixture
def client(settings, identity_provider):
    app = create_app(settings, identity_provider=identity_provider)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def aws_credentials(monkeypatch):
    """Mocked AWS Credentials for moto."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SECURITY_TOKEN", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")
    monkeypatch.delenv("AWS_ENDPOINT_URL", raising=False)


@pytest.fixture
def mocked_aws(aws_credentials):
    with mock_aws():
        boto3.client("s3").create_bucket(Bucket=TEST_BUCKET_NAME)
        yield
