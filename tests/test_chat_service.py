from __future__ import annotations

import logging
import threading

import pytest
from conftest import Stream, make_session, model_message, user_message

from core.exceptions import GenerationBusyError, LLMOperationError
from core.schemas import BatchReport, OptimizationDraft
from prompts import render_prompt


def test_send_message_streams_reply_and_extracts_config(runtime_factory, provider) -> None:
    provider.queue(Stream(["好的！书名：《剑来》\n", "全书预计写 50 章。\n", "Options: [继续] [换个题材]"]))
    runtime = runtime_factory()

    result = runtime.chat.send_message("写个修仙故事")

    state = runtime.session
    assert [m.role for m in state.messages] == ["user", "model"]
    assert state.messages[1].content == result.content
    assert result.options == ["继续", "换个题材"]
    assert not result.cancelled
    assert state.title == "剑来"
    assert state.settings.target_total_chapters == 50
    assert provider.calls[0].history[-1].content == "写个修仙故事"
    assert not runtime.store.is_generating


def test_failure_appends_error_notice_and_releases_slot(runtime_factory, provider) -> None:
    provider.queue(Stream(["半截"], error=LLMOperationError("网络错误")), "恢复了")
    runtime = runtime_factory()

    with pytest.raises(LLMOperationError):
        runtime.chat.send_message("你好")

    messages = runtime.session.messages
    assert messages[1].content == "半截"
    assert messages[-1].is_system_notice
    assert messages[-1].content == "⚠️ Error: 网络错误"
    assert not runtime.store.is_generating

    runtime.chat.send_message("再试一次")
    assert all(not m.is_system_notice for m in provider.calls[1].history)


def test_cancel_keeps_partial_text_without_error(runtime_factory, provider) -> None:
    provider.queue(Stream(["书名：《剑来》\n", "正文", "不会出现"], cancel_after=2))
    runtime = runtime_factory()
    cancel = threading.Event()

    result = runtime.chat.send_message("开始", cancel)

    assert result.cancelled
    assert result.content == "书名：《剑来》\n正文"
    assert runtime.session.messages[-1].content == "书名：《剑来》\n正文"
    assert not any(m.is_system_notice for m in runtime.session.messages)
    assert runtime.session.title == "测试小说"
    assert not runtime.store.is_generating


def test_send_is_refused_while_generating(runtime_factory) -> None:
    runtime = runtime_factory()
    with runtime.store.generation_slot():
        with pytest.raises(GenerationBusyError):
            runtime.chat.send_message("插队")
    assert runtime.session.messages == ()


def test_snowflake_mode_adds_addendum(runtime_factory, provider) -> None:
    provider.queue("一句话梗概")
    runtime = runtime_factory()
    runtime.set_snowflake_mode(True)
    runtime.chat.send_message("开始")
    assert "雪花写作法" in provider.calls[0].extra_instruction


def test_long_conversation_logs_anchor_hint(runtime_factory, provider, caplog) -> None:
    provider.queue("好的")
    messages = [user_message(f"第{i}句") for i in range(51)]
    runtime = runtime_factory(make_session(*messages))
    with caplog.at_level(logging.WARNING):
        runtime.chat.send_message("继续")
    assert render_prompt("long_conversation_hint") in caplog.text


def test_summarize_sends_summary_prompt(runtime_factory, provider) -> None:
    provider.queue("总结")
    runtime = runtime_factory()
    runtime.chat.summarize()
    assert provider.calls[0].prompt == render_prompt("summarize")


def test_next_chapter_shortcut_runs_single_chapter_batch(runtime_factory, provider) -> None:
    provider.queue("## 第1章 开端\n正文")
    runtime = runtime_factory()
    report = runtime.chat.handle_user_input("继续写下一章")
    assert isinstance(report, BatchReport)
    assert report.completed == 1
    assert runtime.stats().current_chapters == 1


def test_rewrite_shortcut_regenerates_latest_chapter(runtime_factory, provider) -> None:
    provider.queue("## 第3章 风暴\n新稿")
    chapter = model_message("## 第3章 风暴\n旧稿", message_id="c3")
    runtime = runtime_factory(make_session(chapter))

    draft = runtime.chat.handle_user_input("重写本章")

    assert isinstance(draft, OptimizationDraft)
    assert draft.target_message_id == "c3"
    assert "第3章 风暴" in provider.calls[0].prompt
    assert runtime.session.messages == (chapter,)


def test_rewrite_shortcut_without_chapter_is_plain_message(runtime_factory, provider) -> None:
    provider.queue("好的")
    runtime = runtime_factory(make_session(model_message("欢迎")))
    runtime.chat.handle_user_input("重写本章")
    assert runtime.session.messages[-2].content == "重写本章"


def test_blank_input_is_ignored(runtime_factory, provider) -> None:
    runtime = runtime_factory()
    assert runtime.chat.handle_user_input("   ") is None
    assert provider.calls == []
