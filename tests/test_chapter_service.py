from __future__ import annotations

import pytest
from conftest import make_session, model_message

from core.schemas import OptimizationDraft

CHAPTER = model_message("前言\n## 第1章 开端\n旧的正文\nOptions: [继续写下一章]", message_id="m1")


def test_optimize_streams_draft_without_touching_messages(runtime_factory, provider) -> None:
    provider.queue("新的正文\nOptions: [a]")
    runtime = runtime_factory(make_session(CHAPTER))

    draft = runtime.chapters.optimize("第1章 开端", "旧的正文", "m1")

    assert draft.kind == "chapter"
    assert draft.new_content == "新的正文"
    assert draft.full_original_text == CHAPTER.content
    assert runtime.session.messages == (CHAPTER,)
    assert provider.calls[0].history[-1].content == provider.calls[0].prompt
    assert not runtime.store.is_generating


def test_confirm_replaces_chapter_text_inside_message(runtime_factory, provider) -> None:
    provider.queue("新的正文")
    runtime = runtime_factory(make_session(CHAPTER))
    draft = runtime.chapters.optimize("第1章 开端", "旧的正文", "m1")

    runtime.chapters.confirm_optimization(draft)

    content = runtime.store.message("m1").content
    assert content.startswith("前言\n## 第1章 开端\n新的正文")
    assert [c.content for c in runtime.document().chapters] == ["新的正文"]


def test_confirm_replaces_whole_message_when_original_is_gone(runtime_factory) -> None:
    runtime = runtime_factory(make_session(CHAPTER))
    draft = OptimizationDraft(
        kind="chapter", target_message_id="m1", original_content="已被编辑的原文",
        full_original_text=CHAPTER.content, new_content="## 第1章 开端\n重写稿",
    )
    runtime.chapters.confirm_optimization(draft)
    assert runtime.store.message("m1").content == "## 第1章 开端\n重写稿"


def test_selection_optimize_only_rewrites_selection(runtime_factory, provider) -> None:
    provider.queue("润色后的段落")
    runtime = runtime_factory(make_session(CHAPTER))

    draft = runtime.chapters.optimize_selection("旧的正文", CHAPTER.content, "m1")
    runtime.chapters.confirm_optimization(draft, final_content="手动修改的段落")

    assert draft.kind == "selection"
    assert "手动修改的段落" in runtime.store.message("m1").content
    assert "## 第1章 开端" in runtime.store.message("m1").content


def test_missing_selection_leaves_message_unchanged(runtime_factory) -> None:
    runtime = runtime_factory(make_session(CHAPTER))
    draft = OptimizationDraft(
        kind="selection", target_message_id="m1", original_content="不存在的句子",
        full_original_text=CHAPTER.content, new_content="新句子",
    )
    runtime.chapters.confirm_optimization(draft)
    assert runtime.store.message("m1").content == CHAPTER.content


def test_regenerate_prompt_uses_target_words(runtime_factory, provider) -> None:
    provider.queue("## 第1章 开端\n重写稿")
    runtime = runtime_factory(make_session(CHAPTER))
    runtime.store.apply_config_patch({"target_words_per_chapter": 5000})

    runtime.chapters.run_action("regenerate", "第1章 开端", "旧的正文", "m1")

    assert "5000 字" in provider.calls[0].prompt


def test_analyze_is_a_normal_chat_turn(runtime_factory, provider) -> None:
    provider.queue("节奏偏慢")
    runtime = runtime_factory(make_session(CHAPTER))

    result = runtime.chapters.run_action("analyze", "第1章 开端", "旧的正文", "m1")

    assert result.content == "节奏偏慢"
    assert len(runtime.session.messages) == 3


def test_unknown_action_raises(runtime_factory) -> None:
    runtime = runtime_factory(make_session(CHAPTER))
    with pytest.raises(ValueError):
        runtime.chapters.run_action("translate", "第1章 开端", "旧的正文", "m1")
