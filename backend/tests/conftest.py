import sys
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from jose import jwt  # noqa: E402

from coursegate.config import settings  # noqa: E402
from coursegate.db import set_store  # noqa: E402
from coursegate.main import app  # noqa: E402
from coursegate_fakes import MemoryStore  # noqa: E402

TEST_JWT_SECRET = "coursegate-test-secret"


@pytest.fixture(scope="module")
def anyio_backend():
    # Limit tests to asyncio backend so local runs do not require the Trio extra.
    return "asyncio"


@pytest.fixture(autouse=True)
def store(monkeypatch) -> MemoryStore:
    memory = MemoryStore()
    previous = set_store(memory)
    monkeypatch.setattr(settings, "supabase_jwt_secret", TEST_JWT_SECRET)
    monkeypatch.setattr(settings, "supabase_url", None)
    monkeypatch.setattr(settings, "supabase_jwks_url", None)
    monkeypatch.setattr(settings, "frontend_base_url", "https://learn.example.test")
    monkeypatch.setattr(settings, "public_api_base_url", "https://api.example.test")
    try:
        yield memory
    finally:
        set_store(previous)


@pytest.fixture
async def async_client(anyio_backend) -> AsyncClient:
    if anyio_backend != "asyncio":
        pytest.skip("Backend tests require asyncio")
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client


@pytest.fixture
def student(store: MemoryStore) -> dict:
    (profile,) = store.seed(
        "profiles",
        {
            "user_id": str(uuid.uuid4()),
            "email": "student@example.test",
            "full_name": "Test Student",
            "phone": "01700000000",
        },
    )
    return profile


def bearer_for(profile: dict) -> dict[str, str]:
    token = jwt.encode(
        {
            "sub": profile["user_id"],
            "email": profile.get("email"),
            "exp": datetime.now(timezone.utc) + timedelta(minutes=5),
        },
        TEST_JWT_SECRET,
        algorithm="HS256",
    )
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_headers(student: dict) -> dict[str, str]:
    return bearer_for(student)


@pytest.fixture
def seed_course(store: MemoryStore):
    def _seed(**overrides) -> dict:
        row = {
            "title": "Digital Marketing Basics",
            "price": 1000,
            "discounted_price": None,
            "is_published": True,
        }
        row.update(overrides)
        (course,) = store.seed("courses", row)
        return course

    return _seed
