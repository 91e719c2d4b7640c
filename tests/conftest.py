from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from typing import List, Optional

import pytest

from config.loader import load_config
from core.schemas import GenerationConfig, Message, NovelSession, ROLE_MODEL, ROLE_USER
from services.runtime import build_runtime

_ids = itertools.count(1)


@dataclass
class ProviderCall:
    history: List[Message]
    prompt: str
    config: GenerationConfig
    context_summary: Optional[str]
    extra_instruction: str


@dataclass
class Stream:
    """一次脚本化的流式回复。cancel_after 为已发出的块数，达到后触发取消信号。"""
    chunks: List[str]
    cancel_after: Optional[int] = None
    error: Optional[Exception] = None


@dataclass
class ScriptedProvider:
    """按顺序返回脚本化回复的生成提供者，并记录每次调用收到的历史"""
    script: List[object] = field(default_factory=list)
    calls: List[ProviderCall] = field(default_factory=list)

    def queue(self, *responses):
        self.script.extend(responses)
        return self

    def generate(self, history, prompt, config, context_summary, on_chunk, cancel_event=None, extra_instruction=""):
        self.calls.append(ProviderCall(list(history), prompt, config, context_summary, extra_instruction))
        response = self.script.pop(0) if self.script else ""
        if isinstance(response, Exception):
            raise response
        if isinstance(response, str):
            response = Stream([response])

        text = ""
        for index, chunk in enumerate(response.chunks):
            if response.cancel_after is not None and index >= response.cancel_after:
                cancel_event.set()
                break
            text += chunk
            on_chunk(chunk)
        if response.error is not None:
            raise response.error
        return text


class FakeClock:
    def __init__(self, start: float = 0.0, step: float = 0.0):
        self.now = start
        self.step = step

    def __call__(self) -> float:
        value = self.now
        self.now += self.step
        return value

    def advance(self, seconds: float):
        self.now += seconds


def model_message(content: str, timestamp: float = None, message_id: str = None, notice: bool = False) -> Message:
    n = next(_ids)
    return Message(
        id=message_id or f"m{n}",
        role=ROLE_MODEL,
        content=content,
        timestamp=float(n) if timestamp is None else timestamp,
        is_system_notice=notice,
    )


def user_message(content: str, timestamp: float = None, message_id: str = None) -> Message:
    n = next(_ids)
    return Message(
        id=message_id or f"u{n}",
        role=ROLE_USER,
        content=content,
        timestamp=float(n) if timestamp is None else timestamp,
    )


def make_session(*messages: Message, **overrides) -> NovelSession:
    values = dict(id="novel-1", title="测试小说", created_at=0.0, last_modified=0.0, messages=tuple(messages))
    values.update(overrides)
    return NovelSession(**values)


@pytest.fixture
def full_config(tmp_path):
    return load_config(user_config_path=str(tmp_path / "missing_user_config.yaml"))


@pytest.fixture
def provider():
    return ScriptedProvider()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def runtime_factory(provider, full_config, sleeps):
    def factory(session: NovelSession = None, **kwargs):
        return build_runtime(
            session or make_session(),
            provider=provider,
            full_config=full_config,
            sleep=sleeps.append,
            clock=FakeClock(step=1.0),
            **kwargs,
        )
    return factory
