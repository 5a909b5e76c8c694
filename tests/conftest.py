"""
Root conftest.py — Shared fixtures for ALL tests (unit + integration)

Fixture hierarchy:
  session-scoped  : rsa keys, test_jwks
  function-scoped : db_tables (autouse), registry, fake_extractor,
                    remote_files, make_worker, job_queue, usage_recorder,
                    app, async_client, make_token, sample bytes

Environment strategy:
  - SQLite file in a temp dir (aiosqlite); tables created and dropped per test.
  - Local filesystem storage in a temp dir; no S3.
  - In-process job queue; the AI provider is a FakeExtractor and URL
    downloads go through httpx.MockTransport. No network, no broker.
  - bcrypt at 4 rounds so key verification stays fast.
  - JWT tokens are built with a test RSA key — no live identity provider.

How to run:
  pytest                          # all tests
  pytest -m unit                  # unit tests only
  pytest -m integration           # API tests against the ASGI app
"""

from __future__ import annotations

import base64
import json
import os
import tempfile
import time
from typing import AsyncGenerator

import httpx
import pytest
import pytest_asyncio
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from httpx import AsyncClient

# ─────────────────────────────────────────────────────────────────────────────
# Patch settings BEFORE any docintel imports so modules read test config
# ─────────────────────────────────────────────────────────────────────────────

_TEST_ROOT = tempfile.mkdtemp(prefix="docintel-tests-")

os.environ.setdefault("DATABASE_URL",           f"sqlite+aiosqlite:///{_TEST_ROOT}/docintel.db")
os.environ.setdefault("STORAGE_BACKEND",        "local")
os.environ.setdefault("LOCAL_STORAGE_DIR",      f"{_TEST_ROOT}/uploads")
os.environ.setdefault("QUEUE_BACKEND",          "inprocess")
os.environ.setdefault("CELERY_BROKER_URL",      "memory://")
os.environ.setdefault("CELERY_RESULT_BACKEND",  "cache+memory://")
os.environ.setdefault("OPENAI_API_KEY",         "sk-test-key")
os.environ.setdefault("API_KEY_BCRYPT_ROUNDS",  "4")
os.environ.setdefault("AUTH_PROVIDER",          "header")
os.environ.setdefault("APP_ENV",                "development")
os.environ.setdefault("DEBUG",                  "true")

# Placeholders for the JWT provider tests
os.environ.setdefault("AUTH_ISSUER",   "https://test.auth.example.com/")
os.environ.setdefault("AUTH_AUDIENCE", "test-api-audience")

from docintel.db.session import AsyncSessionLocal, drop_models, init_models  # noqa: E402
from docintel.llm.extraction import AIExtractor                      # noqa: E402
from docintel.services.registry import DocumentRegistry              # noqa: E402
from docintel.services.usage import UsageRecorder                    # noqa: E402
from docintel.storage.factory import get_storage                     # noqa: E402
from docintel.workers.jobs import JOB_PROCESS_DOCUMENT, build_worker # noqa: E402
from docintel.workers.queue import InProcessJobQueue                 # noqa: E402


# ─────────────────────────────────────────────────────────────────────────────
# Database — fresh schema for every test
# ─────────────────────────────────────────────────────────────────────────────

@pytest_asyncio.fixture(autouse=True)
async def db_tables() -> AsyncGenerator[None, None]:
    await init_models()
    yield
    await drop_models()


@pytest.fixture
def registry() -> DocumentRegistry:
    return DocumentRegistry(AsyncSessionLocal, get_storage())


# ─────────────────────────────────────────────────────────────────────────────
# AI provider double
# ─────────────────────────────────────────────────────────────────────────────

EXTRACTION_RESULT = {
    "summary":   "Quarterly revenue grew 12% on strong subscription sales.",
    "keyPoints": ["Revenue up 12%", "Churn down to 2%"],
    "entities":  ["Acme Corp", "Q3 2024"],
    "sentiment": "Positive",
    "category":  "Financial",
    "sections":  [{"title": "Overview", "summary": "Headline numbers."}],
}


class FakeExtractor(AIExtractor):
    """Returns a canned response (or raises) and records every call."""

    name = "fake"

    def __init__(self, response: str | None = None, error: Exception | None = None) -> None:
        self.response = response if response is not None else "```json\n" + json.dumps(EXTRACTION_RESULT) + "\n```"
        self.error = error
        self.calls: list[dict] = []

    async def extract(self, body: bytes, mime_type: str, *, file_name: str = "document") -> str:
        self.calls.append({"size": len(body), "mime_type": mime_type, "file_name": file_name})
        if self.error is not None:
            raise self.error
        return self.response


@pytest.fixture
def fake_extractor() -> FakeExtractor:
    return FakeExtractor()


# ─────────────────────────────────────────────────────────────────────────────
# Remote files served through httpx.MockTransport
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def remote_files() -> dict[str, tuple[int, bytes, str]]:
    """url → (status, body, content-type). Unknown URLs answer 404."""
    return {}


@pytest.fixture
def mock_transport(remote_files) -> httpx.MockTransport:
    def _handler(request: httpx.Request) -> httpx.Response:
        entry = remote_files.get(str(request.url))
        if entry is None:
            return httpx.Response(404, content=b"not found")
        status_code, body, content_type = entry
        return httpx.Response(status_code, content=body, headers={"content-type": content_type})

    return httpx.MockTransport(_handler)


@pytest.fixture
def make_worker(fake_extractor, mock_transport):
    def _build(extractor: AIExtractor | None = None, transport: httpx.AsyncBaseTransport | None = None):
        return build_worker(
            extractor=extractor or fake_extractor,
            transport=transport or mock_transport,
        )
    return _build


# ─────────────────────────────────────────────────────────────────────────────
# Job queue + usage recorder bound to the test's event loop
# ─────────────────────────────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def job_queue(make_worker) -> AsyncGenerator[InProcessJobQueue, None]:
    """In-process queue running the FakeExtractor; drained before the tables go."""
    async def _process(payload: dict) -> dict:
        outcome = await make_worker().process(payload["document_id"])
        return outcome.as_dict()

    queue = InProcessJobQueue({JOB_PROCESS_DOCUMENT: _process})
    yield queue
    await queue.drain()


@pytest_asyncio.fixture
async def usage_recorder() -> AsyncGenerator[UsageRecorder, None]:
    recorder = UsageRecorder(AsyncSessionLocal)
    yield recorder
    await recorder.flush()


# ─────────────────────────────────────────────────────────────────────────────
# RSA key pair for signing test JWTs (generated once per session)
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture(scope="session")
def rsa_private_key():
    """Generate a 2048-bit RSA private key for test JWT signing."""
    return rsa.generate_private_key(
        public_exponent=65537,
        key_size=2048,
    )


@pytest.fixture(scope="session")
def rsa_public_key(rsa_private_key):
    return rsa_private_key.public_key()


@pytest.fixture(scope="session")
def rsa_private_key_pem(rsa_private_key) -> bytes:
    """PEM-encoded private key bytes (used by jose.jwt.encode)."""
    return rsa_private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )


# ─────────────────────────────────────────────────────────────────────────────
# JWKS document for the test public key
# ─────────────────────────────────────────────────────────────────────────────

TEST_KID      = "test-key-id-2024"
TEST_ISSUER   = "https://test.auth.example.com/"
TEST_AUDIENCE = "test-api-audience"
TEST_USER_ID  = "user-1234"


@pytest.fixture(scope="session")
def test_jwks(rsa_public_key) -> dict:
    """What the real /.well-known/jwks.json returns."""
    pub_numbers = rsa_public_key.public_numbers()

    def _b64url(n: int) -> str:
        byte_length = (n.bit_length() + 7) // 8
        return base64.urlsafe_b64encode(
            n.to_bytes(byte_length, "big")
        ).rstrip(b"=").decode()

    return {
        "keys": [
            {
                "kty": "RSA",
                "use": "sig",
                "alg": "RS256",
                "kid": TEST_KID,
                "n":   _b64url(pub_numbers.n),
                "e":   _b64url(pub_numbers.e),
            }
        ]
    }


@pytest.fixture
def make_token(rsa_private_key_pem):
    """
    Factory fixture: returns a function that builds signed test JWTs.

    Usage:
        token = make_token()
        token = make_token(sub="someone-else")
        token = make_token(expired=True)
    """
    from jose import jwt as jose_jwt

    def _build(
        sub:      str | None = TEST_USER_ID,
        expired:  bool = False,
        audience: str  = TEST_AUDIENCE,
        issuer:   str  = TEST_ISSUER,
        kid:      str  = TEST_KID,
    ) -> str:
        now = int(time.time())
        claims: dict = {
            "email": "test@example.com",
            "iss":   issuer,
            "aud":   audience,
            "exp":   now - 60 if expired else now + 3600,
            "iat":   now,
        }
        if sub is not None:
            claims["sub"] = sub

        return jose_jwt.encode(
            claims,
            rsa_private_key_pem,
            algorithm="RS256",
            headers={"kid": kid},
        )

    return _build


# ─────────────────────────────────────────────────────────────────────────────
# Sample file bytes
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def sample_pdf_bytes() -> bytes:
    """Minimal valid PDF — passes magic-byte check (%PDF header)."""
    return (
        b"%PDF-1.4\n"
        b"1 0 obj\n<< /Type /Catalog /Pages 2 0 R >>\nendobj\n"
        b"2 0 obj\n<< /Type /Pages /Kids [3 0 R] /Count 1 >>\nendobj\n"
        b"3 0 obj\n<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] >>\nendobj\n"
        b"trailer\n<< /Size 4 /Root 1 0 R >>\n"
        b"%%EOF"
    )


@pytest.fixture
def sample_png_bytes() -> bytes:
    """PNG signature followed by an IHDR-shaped chunk."""
    return b"\x89PNG\r\n\x1a\n" + b"\x00\x00\x00\rIHDR" + b"\x00" * 64


@pytest.fixture
def exe_bytes() -> bytes:
    """Windows PE executable — rejected by the MIME check."""
    return b"MZ\x90\x00" + b"\x00" * 100


# ─────────────────────────────────────────────────────────────────────────────
# FastAPI app with the queue and usage recorder overridden
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def app(job_queue, usage_recorder):
    """
    FastAPI app with loop-bound singletons replaced:
      - get_job_queue      → in-process queue running the FakeExtractor
      - get_usage_recorder → fresh recorder (tests call flush())
    Database, storage and identity are the real test-configured ones.
    """
    from docintel.api.dependencies import get_usage_recorder
    from docintel.main import app as fastapi_app
    from docintel.workers.queue import get_job_queue

    fastapi_app.dependency_overrides[get_job_queue]      = lambda: job_queue
    fastapi_app.dependency_overrides[get_usage_recorder] = lambda: usage_recorder

    yield fastapi_app

    fastapi_app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def async_client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP test client; ASGITransport runs the app in this event loop."""
    transport = httpx.ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

