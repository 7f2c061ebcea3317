"""
Quillnest Backend — Test Configuration (conftest.py)
======================================================

What:  Shared pytest fixtures for the entire test suite.
How:   Integration tests run the real app (create_app) against a temporary
       SQLite file through aiosqlite, with in-memory fakes for the media
       host and the mail provider. Unit tests use mocks.

Fixture Hierarchy (all function-scoped):
    ├── test_settings: Settings for a fast, isolated run (bcrypt cost 4)
    ├── database: temporary SQLite database with every table created
    ├── media_service / mail_service: in-memory fakes of the upstream ports
    ├── app / client: FastAPI app and an HTTPX AsyncClient bound to it
    ├── create_user: registers, verifies and logs in a user over HTTP
    ├── mock_db_session: AsyncMock of an AsyncSession for unit tests
    └── sample_image_bytes / sample_pdf_bytes: upload payloads
"""

import html
import os
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

# Must be set before any quillnest import: quillnest.main builds an app at import
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./quillnest_import_only.db"
os.environ["SECRET_KEY"] = "test-secret-key-that-is-long-enough-for-hs256"
os.environ["LOG_LEVEL"] = "WARNING"

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from quillnest.config import Settings
from quillnest.database import Database
from quillnest.exceptions import UpstreamServiceError, UpstreamUnavailableError
from quillnest.main import create_app
from quillnest.services.mail_service import MailService
from quillnest.services.media_service import MediaService, StoredMedia

PASSWORD = "Secret123!"
BASE_URL = "http://test"

_HREF = re.compile(r'href="([^"]+)"')


# ══════════════════════════════════════════════════════════════════════════
# Fakes for the upstream ports
# ══════════════════════════════════════════════════════════════════════════

class FakeMediaService(MediaService):
    """
    In-memory media host.

    fail_upload_after: number of uploads that succeed before every further
        upload raises a retryable error (None = never fail)
    fail_delete: every delete raises a permanent error
    """

    def __init__(self):
        self.stored: Dict[str, StoredMedia] = {}
        self.deleted: List[str] = []
        self.upload_count = 0
        self.fail_upload_after: Optional[int] = None
        self.fail_delete = False

    async def upload(self, content, filename, folder, resource_type="image"):
        if self.fail_upload_after is not None and self.upload_count >= self.fail_upload_after:
            raise UpstreamUnavailableError(message="Media host is down", service="media")
        self.upload_count += 1
        public_id = f"{folder}/{uuid4().hex}"
        media = StoredMedia(
            public_id=public_id,
            url=f"https://media.test/{public_id}/{filename}",
            resource_type=resource_type,
        )
        self.stored[public_id] = media
        return media

    async def delete(self, public_id, resource_type="image"):
        if self.fail_delete:
            raise UpstreamServiceError(message="Media host refused the delete", service="media")
        self.deleted.append(public_id)
        self.stored.pop(public_id, None)


@dataclass
class SentMail:
    to: str
    subject: str
    html_body: str

    @property
    def link(self) -> str:
        return html.unescape(_HREF.search(self.html_body).group(1))


class RecordingMailService(MailService):
    """Keeps every message instead of sending it; `fail` makes sends raise."""

    def __init__(self):
        self.sent: List[SentMail] = []
        self.fail = False

    async def send(self, to, subject, html_body):
        if self.fail:
            raise UpstreamUnavailableError(message="Mail provider is down", service="mail")
        self.sent.append(SentMail(to=to, subject=subject, html_body=html_body))

    def last_to(self, email: str) -> SentMail:
        matching = [m for m in self.sent if m.to == email]
        assert matching, f"no mail sent to {email}"
        return matching[-1]


@dataclass
class Account:
    """A user created through the HTTP API."""
    id: str
    username: str
    email: str
    password: str
    token: Optional[str] = None
    extra: dict = field(default_factory=dict)

    @property
    def headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}


# ══════════════════════════════════════════════════════════════════════════
# Application Fixtures
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def test_settings(tmp_path):
    return Settings(
        _env_file=None,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'quillnest_test.db'}",
        secret_key="test-secret-key-that-is-long-enough-for-hs256",
        bcrypt_rounds=4,
        public_base_url=BASE_URL,
        initial_admin_emails="root@x.com",
        retry_max_attempts=1,
        rate_limit_requests=10_000,
        auth_rate_limit_requests=10_000,
        log_level="WARNING",
    )


@pytest_asyncio.fixture
async def database(test_settings):
    db = Database.from_settings(test_settings)
    await db.create_all()
    yield db
    await db.dispose()


@pytest.fixture
def media_service():
    return FakeMediaService()


@pytest.fixture
def mail_service():
    return RecordingMailService()


@pytest.fixture
def app(test_settings, database, media_service, mail_service):
    return create_app(
        settings=test_settings,
        database=database,
        media_service=media_service,
        mail_service=mail_service,
    )


@pytest_asyncio.fixture
async def client(app):
    """
    HTTPX AsyncClient routed straight into the ASGI app (no server).

    Usage:
        async def test_health(client):
            response = await client.get("/health")
            assert response.status_code == 200
    """
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url=BASE_URL) as ac:
        yield ac


@pytest.fixture
def create_user(client, mail_service):
    """
    Factory: sign up, follow the emailed verification link, log in.

    Usage:
        alice = await create_user("alice")
        await client.get("/api/v1/get-users", headers=alice.headers)
    """

    async def _create(
        username: str = "alice",
        email: Optional[str] = None,
        password: str = PASSWORD,
        verify: bool = True,
    ) -> Account:
        email = email or f"{username}@x.com"
        response = await client.post(
            "/api/v1/signup",
            json={"username": username, "email": email, "password": password},
        )
        assert response.status_code == 201, response.text
        account = Account(id=response.json()["user"]["id"], username=username, email=email, password=password)

        if verify:
            response = await client.post(mail_service.last_to(email).link)
            assert response.status_code == 200, response.text
            response = await client.post("/api/v1/login", json={"email": email, "password": password})
            assert response.status_code == 200, response.text
            account.token = response.json()["token"]
        return account

    return _create


# ══════════════════════════════════════════════════════════════════════════
# Unit Test Fixtures
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def mock_db_session():
    """
    A MagicMock that simulates AsyncSession behavior.

    Usage:
        mock_db_session.execute.return_value.rowcount = 0
        await comment_service._toggle(mock_db_session, Like, identity, post_id)
    """
    session = AsyncMock()
    session.execute = AsyncMock()
    session.scalar = AsyncMock()
    session.get = AsyncMock()
    session.flush = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.close = AsyncMock()
    session.add = MagicMock()
    return session


@pytest.fixture
def sample_image_bytes():
    """Minimal JPEG: SOI marker + JFIF header + EOI marker."""
    return (
        b'\xff\xd8\xff\xe0\x00\x10JFIF\x00\x01\x01\x00\x00\x01\x00\x01\x00\x00'
        b'\xff\xd9'
    )


@pytest.fixture
def sample_pdf_bytes():
    return b"%PDF-1.4\n1 0 obj\n<< /Type /Catalog >>\nendobj\ntrailer\n<< /Root 1 0 R >>\n%%EOF\n"
