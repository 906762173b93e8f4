import pytest

from spica_writer.locations import LocationTracker
from spica_writer.store import ProjectStore

CONFIG_ENV_VARS = (
    "OPENAI_API_KEY",
    "SPICA_LLM_URL",
    "SPICA_LLM_FORMAT",
    "SPICA_LLM_MODEL",
    "SPICA_LLM_TIMEOUT",
    "LOG_LEVEL",
)


class StubLLM:
    """Returns canned replies in order and records every call.

    A reply that is an exception instance is raised instead of returned.
    """

    def __init__(self, *replies: str | Exception) -> None:
        self.replies = list(replies)
        self.calls: list[tuple[str, str, str]] = []

    async def __call__(self, stage: str, system_prompt: str, user_prompt: str) -> str:
        self.calls.append((stage, system_prompt, user_prompt))
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Point config at a fresh directory and clear config env vars for every test."""
    for var in CONFIG_ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("SPICA_PROJECT_DIR", str(tmp_path / "data"))


@pytest.fixture
def store() -> ProjectStore:
    return ProjectStore.new("Test Project")


@pytest.fixture
def tracker(store) -> LocationTracker:
    return LocationTracker(store)


@pytest.fixture
def scene_id(store) -> str:
    return store.active_scene_id


@pytest.fixture
def make_llm():
    return StubLLM
