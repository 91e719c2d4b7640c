from __future__ import annotations

import threading

import pytest
from conftest import Stream, make_session, model_message, user_message

from core.exceptions import AnchorError, ConfigurationError, GenerationBusyError, LLMOperationError
from core.schemas import AnchorPolicy
from prompts import render_prompt
from services.anchor_service import next_trigger_for


def _long_session(chapters: int = 3, **overrides):
    messages = []
    for n in range(1, chapters + 1):
        messages.append(user_message(f"写第{n}章"))
        messages.append(model_message(f"## 第{n}章 标题{n}\n" + "字" * 100))
    return make_session(*messages, **overrides)


def test_anchor_commits_digest_and_notice(runtime_factory, provider) -> None:
    provider.queue("## 剧情锚点\n主角在京城\nOptions: [继续]")
    session = _long_session()
    runtime = runtime_factory(session)

    outcome = runtime.anchor.compact()

    assert outcome.succeeded
    assert outcome.digest == "## 剧情锚点\n主角在京城"
    state = runtime.session
    assert state.context_summary == outcome.digest
    assert state.messages[:len(session.messages)] == session.messages
    request, response, notice = state.messages[len(session.messages):]
    assert request.content == render_prompt("anchor_request")
    assert response.content == outcome.digest
    assert notice.is_system_notice
    assert "主角在京城" in notice.content
    assert not runtime.store.is_generating


def test_later_requests_use_truncated_history_but_full_document(runtime_factory, provider) -> None:
    provider.queue("## 剧情锚点\n摘要", "## 第6章 新篇\n正文")
    runtime = runtime_factory(_long_session(chapters=5))

    runtime.anchor.compact()
    runtime.chat.send_message("继续写第6章")

    call = provider.calls[1]
    assert len(call.history) <= 6
    assert call.context_summary == "## 剧情锚点\n摘要"
    titles = [c.title for c in runtime.document().chapters]
    assert titles[0] == "第1章 标题1"
    assert titles[-1] == "第6章 新篇"
    assert len(titles) == 6


def test_manual_anchor_failure_restores_messages_and_adds_notice(runtime_factory, provider) -> None:
    provider.queue(Stream(["## 剧情"], error=LLMOperationError("超时")))
    session = _long_session(context_summary="旧摘要")
    runtime = runtime_factory(session)

    with pytest.raises(AnchorError):
        runtime.anchor.compact()

    *kept, notice = runtime.session.messages
    assert tuple(kept) == session.messages
    assert notice.is_system_notice
    assert notice.content.startswith("⚠️ Error: 锚点构建失败")
    assert "超时" in notice.content
    assert runtime.session.context_summary == "旧摘要"
    assert not runtime.store.is_generating


def test_silent_anchor_failure_returns_outcome(runtime_factory, provider) -> None:
    provider.queue(LLMOperationError("超时"))
    session = _long_session()
    runtime = runtime_factory(session)

    outcome = runtime.anchor.compact(silent=True)

    assert not outcome.succeeded
    assert "超时" in outcome.error
    assert runtime.session.messages == session.messages


def test_cancelled_anchor_restores_messages(runtime_factory, provider) -> None:
    provider.queue(Stream(["## 剧情锚点\n", "未完"], cancel_after=1))
    session = _long_session()
    runtime = runtime_factory(session)

    outcome = runtime.anchor.compact(cancel_event=threading.Event())

    assert outcome.cancelled
    assert runtime.session.messages == session.messages
    assert runtime.session.context_summary is None


def test_manual_anchor_refused_while_generating(runtime_factory) -> None:
    runtime = runtime_factory(_long_session())
    with runtime.store.generation_slot():
        with pytest.raises(GenerationBusyError):
            runtime.anchor.compact()


@pytest.mark.parametrize(
    ("chapters", "interval", "current", "expected"),
    [(0, 20, 0, 20), (20, 20, 0, 40), (25, 20, 0, 40), (25, 50, 0, 50), (3, 20, 100, 100)],
)
def test_next_trigger_for(chapters: int, interval: int, current: int, expected: int) -> None:
    assert next_trigger_for(chapters, interval, current) == expected


def test_configure_anchor_uses_current_chapter_count(runtime_factory) -> None:
    runtime = runtime_factory(_long_session(chapters=25, anchor_config=AnchorPolicy(next_trigger=20)))

    policy = runtime.anchor.configure(enabled=True, interval=20)

    assert policy == AnchorPolicy(enabled=True, mode="chapter", chapter_interval=20, next_trigger=40)
    with pytest.raises(ConfigurationError):
        runtime.anchor.configure(enabled=True, interval=30)
