"""
章节操作服务 (Chapter Actions)
精修 / 重写章节以及润色选中段落时，模型输出先流入候选稿，
由用户确认后才替换原消息中的内容。分析章节则作为普通对话发送。
"""
from __future__ import annotations
import logging
import threading

from core.exceptions import ConfigurationError, LLMOperationError
from core.schemas import ChatResult, make_message, OptimizationDraft, ROLE_USER
from core.store import MessageContentReplaced
from core.text_cleaning import strip_options
from prompts import render_prompt

logger = logging.getLogger(__name__)

CHAPTER_ACTIONS = ("optimize", "regenerate", "analyze")


class ChapterService:
    def __init__(self, runtime):
        self.runtime = runtime

    def run_action(self, action: str, chapter_title: str, content: str, message_id: str,
                   cancel_event: threading.Event = None):
        """
        章节操作入口。

        Returns:
            OptimizationDraft (精修 / 重写) 或 ChatResult (分析)。
        """
        if action == "optimize":
            return self.optimize(chapter_title, content, message_id, cancel_event)
        if action == "regenerate":
            return self.regenerate(chapter_title, content, message_id, cancel_event)
        if action == "analyze":
            return self.analyze(chapter_title, content, cancel_event)
        raise ValueError(f"未知的章节操作: {action}")

    def optimize(self, chapter_title: str, content: str, message_id: str,
                 cancel_event: threading.Event = None) -> OptimizationDraft:
        prompt = render_prompt("chapter_optimize", chapter_title=chapter_title, content=content)
        return self._draft("chapter", prompt, content, message_id, cancel_event)

    def regenerate(self, chapter_title: str, content: str, message_id: str,
                   cancel_event: threading.Event = None) -> OptimizationDraft:
        prompt = render_prompt(
            "chapter_regenerate",
            chapter_title=chapter_title,
            content=content,
            target_words=self.runtime.store.state.settings.target_words_per_chapter,
        )
        return self._draft("chapter", prompt, content, message_id, cancel_event)

    def optimize_selection(self, selection: str, context: str, message_id: str,
                           cancel_event: threading.Event = None) -> OptimizationDraft:
        prompt = render_prompt("selection_optimize", selection=selection, context=context)
        return self._draft("selection", prompt, selection, message_id, cancel_event)

    def analyze(self, chapter_title: str, content: str, cancel_event: threading.Event = None) -> ChatResult:
        prompt = render_prompt("chapter_analyze", chapter_title=chapter_title, content=content)
        return self.runtime.chat.send_message(prompt, cancel_event)

    def _draft(self, kind: str, prompt: str, original: str, message_id: str,
               cancel_event: threading.Event = None) -> OptimizationDraft:
        """流式生成候选稿，不向会话写入任何消息"""
        store = self.runtime.store
        with store.generation_slot():
            state = store.state
            target = state.find_message(message_id)
            draft = OptimizationDraft(
                kind=kind,
                target_message_id=message_id,
                original_content=original,
                full_original_text=target.content if target else "",
            )
            history = self.runtime.history() + [make_message(ROLE_USER, prompt, prefix="temp-")]

            def on_chunk(chunk: str):
                draft.new_content += chunk

            logger.info(f"正在生成候选稿 (类型: {kind}, 目标消息: {message_id})")
            try:
                self.runtime.provider.generate(
                    history, prompt, state.settings, state.context_summary, on_chunk, cancel_event,
                    extra_instruction=self.runtime.extra_instruction(),
                )
            except (LLMOperationError, ConfigurationError) as e:
                logger.error(f"候选稿生成失败: {e}", exc_info=True)
                raise

            draft.cancelled = cancel_event is not None and cancel_event.is_set()
            draft.new_content = strip_options(draft.new_content)
            return draft

    def confirm_optimization(self, draft: OptimizationDraft, final_content: str = None) -> str:
        """
        把确认后的内容写回目标消息。
        章节类候选稿在原文中找不到原始片段时，整条消息被替换。

        Returns:
            str: 目标消息的新内容。
        """
        final_content = draft.new_content if final_content is None else final_content
        full_text = draft.full_original_text
        if draft.original_content and draft.original_content in full_text:
            new_full = full_text.replace(draft.original_content, final_content, 1)
        elif draft.kind == "chapter":
            new_full = final_content
        else:
            logger.warning("选中的段落已不在原消息中，保持原文不变。")
            new_full = full_text

        store = self.runtime.store
        if store.message(draft.target_message_id) is None:
            logger.warning(f"目标消息 {draft.target_message_id} 已不存在，忽略确认操作。")
            return new_full
        store.dispatch(MessageContentReplaced(message_id=draft.target_message_id, content=new_full))
        logger.info(f"已将候选稿写回消息 {draft.target_message_id}")
        return new_full
