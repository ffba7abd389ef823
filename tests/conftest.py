import os

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# In-memory DB and no provider keys for tests
os.environ["GEMINI_API_KEY"] = ""
os.environ["GOOGLE_GENAI_API_KEY"] = ""
os.environ["DEEPGRAM_API_KEY"] = ""
os.environ["DATABASE_PATH"] = ":memory:"
os.environ["DATABASE_URL"] = ""
os.environ["HEALTHCHECK_KEY"] = ""

from tabscribe.database import close_db, init_db
from tabscribe.errors import ProviderError
from tabscribe.main import app
from tabscribe.routers.transcribe import get_orchestrator
from tabscribe.services.orchestrator import ProviderOrchestrator


class FakeProvider:
    """Scripted provider: each call pops the next payload or raises the next error."""

    def __init__(self, name: str, model: str, outcomes: list | None = None, available: bool = True):
        self.name = name
        self.model = model
        self.outcomes = list(outcomes or [])
        self.calls: list[dict] = []
        self._available = available

    def available(self) -> bool:
        return self._available

    async def transcribe(self, audio: bytes, mime_type: str, prev_tail: str | None = None) -> dict:
        self.calls.append({"audio": audio, "mime_type": mime_type, "prev_tail": prev_tail})
        if not self.outcomes:
            raise ProviderError("no scripted outcome left", provider=self.name)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def gemini_payload(text: str) -> dict:
    return {"candidates": [{"content": {"parts": [{"text": text}], "role": "model"}}]}


def deepgram_payload(text: str) -> dict:
    return {"results": {"channels": [{"alternatives": [{"transcript": text, "confidence": 0.98}]}]}}


async def no_sleep(_seconds: float) -> None:
    return None


@pytest.fixture
def primary():
    return FakeProvider("gemini", "gemini-2.5-flash")


@pytest.fixture
def fallback():
    return FakeProvider("deepgram", "nova-3")


@pytest.fixture
def orchestrator(primary, fallback):
    return ProviderOrchestrator(primary, fallback, sleep=no_sleep, timeout=5)


@pytest_asyncio.fixture
async def db():
    """Provide a fresh in-memory database for each test."""
    import tabscribe.database as db_mod

    # Close any existing connection
    if db_mod._db is not None:
        try:
            await db_mod._db.close()
        except Exception:
            pass
    db_mod._db = None

    db_mod.DATABASE_PATH = ":memory:"
    db_mod.DATABASE_URL = ""

    await init_db()
    database = await db_mod.get_db()
    yield database
    await close_db()


@pytest_asyncio.fixture
async def async_client(db, orchestrator):
    """Async httpx client with the scripted providers wired in."""
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
    app.dependency_overrides.clear()
