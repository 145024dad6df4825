"""
Test configuration and fixtures for the scanflow test suite.
Provides a fake clock, a registry/mapper pair on a temporary data directory
and a classifier faked with httpx.MockTransport.
"""
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from scanflow.integrations.classifier_client import ClassifierClient
from scanflow.models.document import DocumentOrigin, DocumentStatus
from scanflow.pipelines.classification import ClassificationRouter
from scanflow.pipelines.sweepers import LifecycleSweepers
from scanflow.services.document_service import DocumentService
from scanflow.storage.folders import FolderStateMapper
from scanflow.storage.registry import DocumentRegistry

PDF_BYTES = b"%PDF-1.4\n1 0 obj\n<< /Type /Catalog >>\nendobj\ntrailer\n<< /Root 1 0 R >>\n%%EOF\n"


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: marks tests as unit tests (no HTTP surface)")
    config.addinivalue_line("markers", "integration: marks tests as integration tests (full app via TestClient)")


class FakeClock:
    """Deterministic UTC clock; advance() moves it forward."""

    def __init__(self, start=None):
        self.current = start or datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.current

    def advance(self, **kwargs):
        self.current = self.current + timedelta(**kwargs)
        return self.current


class FakeClassifier:
    """
    Records classifier requests and answers with a queued body.

    Set `body` to the JSON the classifier should return, `status_code` for an
    error status, or `error` to an httpx exception to raise.
    """

    def __init__(self, body=None):
        self.body = body if body is not None else {"kind": "INVOICE", "confidence": 0.9}
        self.status_code = 200
        self.error = None
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return httpx.Response(self.status_code, json=self.body)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def data_dir(tmp_path):
    return tmp_path / "data"


@pytest.fixture
def registry(data_dir, clock):
    return DocumentRegistry(data_dir / "documents.json", lock_timeout=1.0, clock=clock)


@pytest.fixture
def mapper(data_dir, registry):
    folder_mapper = FolderStateMapper(data_dir, registry)
    folder_mapper.ensure_folders()
    return folder_mapper


@pytest.fixture
def fake_classifier():
    return FakeClassifier()


@pytest.fixture
async def classifier_client(fake_classifier):
    client = ClassifierClient("http://classifier.test", timeout=2.0, transport=fake_classifier.transport)
    yield client
    await client.aclose()


@pytest.fixture
def router(registry, mapper, classifier_client):
    return ClassificationRouter(registry, mapper, classifier_client, token_factory=lambda: "tok-1")


@pytest.fixture
def sweepers(registry, mapper):
    return LifecycleSweepers(registry, mapper, retention=timedelta(days=30), system_user="system")


@pytest.fixture
def service(registry, mapper, router, sweepers):
    return DocumentService(registry, mapper, router, sweepers, max_upload_bytes=1024 * 1024)


@pytest.fixture
def place_file(mapper):
    """Drop a PDF into a status folder, as a scanner or operator would."""

    def _place(filename, status=DocumentStatus.INBOX, content=PDF_BYTES):
        path = mapper.folder_for(status) / filename
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
        return path

    return _place


@pytest.fixture
def inbox_document(registry, place_file):
    """Factory registering a scanner document whose file sits in the inbox."""
    async def _create(filename="scan_001.pdf"):
        place_file(filename)
        return await registry.create(filename, DocumentOrigin.SCANNER, user="system")

    return _create


@pytest.fixture
def pdf_bytes():
    return PDF_BYTES
