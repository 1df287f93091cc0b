import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import asyncio

import httpx
import pytest

from branchchat.core.config import get_settings
from branchchat.main import create_app
from branchchat.providers.base import MockAdapter, ProviderRuntimeConfig


@pytest.fixture
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("DEFAULT_PROVIDER", "stub")
    monkeypatch.setenv("DEFAULT_MODEL", "stub-model")
    get_settings.cache_clear()
    app = create_app()
    app.state.provider_service.set_adapters(
        {"stub": StubAdapter(), "mock": MockAdapter(chunk_size=3)}
    )
    yield app
    get_settings.cache_clear()


@pytest.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    await app.state.stream_manager.shutdown()


@pytest.fixture
def anyio_backend():
    return "asyncio"


class StubAdapter:
    """Adapter stub used to avoid external API calls in tests."""

    def __init__(self, chunks: tuple[str, ...] = ("Hello", ", ", "world")) -> None:
        self.chunks = chunks
        self.calls: list[list[dict]] = []

    async def list_models(self, cfg: ProviderRuntimeConfig) -> list[str]:
        return [cfg.model_name or "stub-model"]

    async def stream_chat(
        self,
        cfg: ProviderRuntimeConfig,
        messages: list[dict],
        abort: asyncio.Event,
    ):
        self.calls.append(messages)
        for chunk in self.chunks:
            if abort.is_set():
                return
            await asyncio.sleep(0)
            yield chunk
