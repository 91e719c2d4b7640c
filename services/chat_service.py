"""
对话业务服务 (Chat Service)
处理单轮对话：占用生成槽位、追加用户消息与占位消息、流式写入模型回复，
完成后运行配置自动提取器。也负责输入框中的快捷指令。
"""
from __future__ import annotations
import logging
import re
import threading

from core.exceptions import ConfigurationError, LLMOperationError
from core.schemas import ChatResult, make_message, ROLE_MODEL, ROLE_USER
from core.store import MessagesAppended
from core.text_cleaning import extract_options
from prompts import render_prompt
from services.streaming import stream_into_message

logger = logging.getLogger(__name__)

SHORTCUT_NEXT_CHAPTER = "继续写下一章"
SHORTCUT_REWRITE_CHAPTER = "重写本章"

_CHAPTER_HEADING = re.compile(r"##\s*(第[^\s]+章\s*[^\n]*)")


def is_cancelled(cancel_event: threading.Event = None) -> bool:
    return cancel_event is not None and cancel_event.is_set()


class ChatService:
    def __init__(self, runtime):
        self.runtime = runtime

    def send_message(self, text: str, cancel_event: threading.Event = None) -> ChatResult:
        """
        发送一条用户消息并流式接收回复。

        失败时在对话中追加错误提示并重新抛出异常；取消时保留已生成的部分，不视为错误。
        """
        with self.runtime.store.generation_slot():
            return self._send(text, cancel_event)

    def _send(self, text: str, cancel_event: threading.Event = None) -> ChatResult:
        store = self.runtime.store
        state = store.state
        if not state.context_summary and len(state.messages) > self.runtime.long_conversation_threshold:
            logger.warning(render_prompt("long_conversation_hint"))

        user_msg = make_message(ROLE_USER, text)
        placeholder = make_message(ROLE_MODEL, "")
        store.dispatch(MessagesAppended(messages=(user_msg, placeholder)))
        history = self.runtime.history(exclude_ids=(placeholder.id,))

        try:
            full_text = stream_into_message(self.runtime, history, text, placeholder.id, cancel_event)
        except (LLMOperationError, ConfigurationError) as e:
            logger.error(f"对话生成失败: {e}", exc_info=True)
            self.runtime.append_error_notice(e)
            raise

        cancelled = is_cancelled(cancel_event)
        if cancelled:
            logger.info(f"对话生成已取消，保留 {len(full_text)} 字的部分回复。")
        else:
            self.runtime.apply_config_directives(full_text)
        return ChatResult(
            message_id=placeholder.id,
            content=full_text,
            cancelled=cancelled,
            options=extract_options(full_text),
        )

    def summarize(self, cancel_event: threading.Event = None) -> ChatResult:
        """总结对话，作为普通的一轮对话发送"""
        return self.send_message(render_prompt("summarize"), cancel_event)

    def handle_user_input(self, text: str, cancel_event: threading.Event = None):
        """
        输入框入口：识别快捷指令，其余内容作为普通消息发送。

        Returns:
            ChatResult | BatchReport | OptimizationDraft | None
        """
        content = (text or "").strip()
        if not content:
            logger.debug("忽略空白输入。")
            return None

        if content == SHORTCUT_NEXT_CHAPTER:
            return self.runtime.batch.generate_chapters(1, cancel_event)

        if content == SHORTCUT_REWRITE_CHAPTER:
            messages = self.runtime.store.state.messages
            last = messages[-1] if messages else None
            if last is not None and last.role == ROLE_MODEL and "## 第" in last.content:
                m = _CHAPTER_HEADING.search(last.content)
                if m:
                    return self.runtime.chapters.regenerate(m.group(1).strip(), last.content, last.id, cancel_event)

        return self.send_message(content, cancel_event)
