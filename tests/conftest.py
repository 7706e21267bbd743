"""Shared fixtures: in-memory storage and a scripted OpenAI client."""

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from studychat.engine import ConversationEngine
from studychat.gateway import CompletionGateway
from studychat.reveal import RevealScheduler
from studychat.storage import MemoryKeyValueStore, MessageStore


def make_completion(content):
    """Shape of an openai ChatCompletion as far as the gateway reads it."""
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


def make_client(*responses):
    """Client whose successive chat.completions.create calls return (or raise) `responses`."""
    effects = [r if isinstance(r, BaseException) else make_completion(r) for r in responses]
    client = MagicMock()
    client.chat.completions.create = AsyncMock(side_effect=effects)
    return client


def sent_messages(client, call_index=0):
    return client.chat.completions.create.call_args_list[call_index].kwargs["messages"]


async def instant_sleep(_interval):
    await asyncio.sleep(0)


async def drain(rounds=10):
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def kv():
    return MemoryKeyValueStore()


@pytest.fixture
def store(kv):
    return MessageStore(kv)


@pytest.fixture
def make_engine(kv, store):
    """Build an engine over the shared store; returns (engine, client)."""

    def _make(*responses, sleep=instant_sleep, scanner=None):
        client = make_client(*responses)
        scheduler = RevealScheduler(store, sleep=sleep)
        engine = ConversationEngine.from_store(
            kv, CompletionGateway(client=client), scheduler=scheduler, scanner=scanner
        )
        return engine, client

    return _make
