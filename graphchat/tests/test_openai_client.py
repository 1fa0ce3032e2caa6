import types

import pytest

from graphchat.pipeline import openai_client


class FakeOpenAI:
    created = []

    def __init__(self, api_key, base_url=None):
        self.api_key = api_key
        self.base_url = base_url
        self.models = types.SimpleNamespace(list=lambda: types.SimpleNamespace(data=[types.SimpleNamespace(id="gpt-4")]))
        FakeOpenAI.created.append(self)


@pytest.fixture(autouse=True)
def fake_openai(monkeypatch):
    FakeOpenAI.created = []
    openai_client.reset_clients()
    monkeypatch.setattr(openai_client, "_load_openai_client", lambda: FakeOpenAI)
    yield
    openai_client.reset_clients()


def test_client_is_reused_for_the_same_key():
    first = openai_client._client("sk-a", "https://llm.example/v1")

    assert openai_client._client("sk-a", "https://llm.example/v1") is first
    assert len(FakeOpenAI.created) == 1


def test_only_the_current_client_is_kept():
    openai_client._client("sk-a", "https://llm.example/v1")
    second = openai_client._client("sk-b", "https://llm.example/v1")

    assert second.api_key == "sk-b"
    assert openai_client._client("sk-b", "https://llm.example/v1") is second
    assert openai_client._client("sk-a", "https://llm.example/v1") is not FakeOpenAI.created[0]
    assert len(FakeOpenAI.created) == 3


def test_reset_clients_drops_the_cached_client():
    first = openai_client._client("sk-a", "https://llm.example/v1")
    openai_client.reset_clients()

    assert openai_client._client("sk-a", "https://llm.example/v1") is not first


def test_list_models_uses_the_shared_client():
    assert openai_client.list_models("sk-a", "https://llm.example/v1") == ["gpt-4"]
