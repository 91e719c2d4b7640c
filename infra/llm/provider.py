"""
流式生成提供者 (Generation Provider)
把会话历史转换为 LangChain 消息并以流式方式调用聊天模型。
核心业务只依赖 generate() 这一个约定，不关心背后是哪家厂商的接口。
"""
from __future__ import annotations
import logging
import threading
from typing import Callable, List, Optional, Sequence

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from core.context import build_system_instruction
from core.exceptions import LLMOperationError
from core.schemas import GenerationConfig, Message, ROLE_USER
from infra.llm.factory import get_llm

logger = logging.getLogger(__name__)


def to_langchain_messages(history: Sequence[Message], prompt: str, system_instruction: str) -> List[BaseMessage]:
    """历史末尾不是用户消息时，把 prompt 作为新的用户消息追加"""
    messages: List[BaseMessage] = [SystemMessage(content=system_instruction)]
    for m in history:
        if m.role == ROLE_USER:
            messages.append(HumanMessage(content=m.content))
        elif m.content:
            messages.append(AIMessage(content=m.content))
    if not history or history[-1].role != ROLE_USER:
        messages.append(HumanMessage(content=prompt))
    return messages


def chunk_text(chunk) -> str:
    """兼容字符串内容和内容块列表两种流式输出格式"""
    content = getattr(chunk, "content", chunk)
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and block.get("type") == "text":
                parts.append(block.get("text", ""))
        return "".join(parts)
    return ""


class LangChainGenerationProvider:
    """
    基于 LangChain 聊天模型的生成提供者。

    Args:
        llm_factory: 根据 GenerationConfig 创建模型实例的函数，默认读取提供商模板。
        default_instruction: 配置中没有系统指令时使用的默认指令。
    """

    def __init__(self, llm_factory: Callable[[GenerationConfig], object] = get_llm, default_instruction: str = ""):
        self.llm_factory = llm_factory
        self.default_instruction = default_instruction

    def generate(
        self,
        history: Sequence[Message],
        prompt: str,
        config: GenerationConfig,
        context_summary: Optional[str],
        on_chunk: Callable[[str], None],
        cancel_event: threading.Event = None,
        extra_instruction: str = "",
    ) -> str:
        """
        流式生成，每收到一段增量文本就调用 on_chunk。
        取消时提前返回已生成的部分；传输或模型错误抛出 LLMOperationError。
        """
        system_instruction = build_system_instruction(
            config, context_summary, self.default_instruction, extra_instruction
        )
        lc_messages = to_langchain_messages(history, prompt, system_instruction)
        llm = self.llm_factory(config)

        full_text = ""
        logger.info(f"开始流式生成 (模型: {config.model}, 历史消息: {len(history)} 条)")
        try:
            for chunk in llm.stream(lc_messages):
                if cancel_event is not None and cancel_event.is_set():
                    logger.info("生成已被用户取消，保留已生成内容。")
                    break
                text = chunk_text(chunk)
                if text:
                    full_text += text
                    on_chunk(text)
        except Exception as e:
            if cancel_event is not None and cancel_event.is_set():
                return full_text
            logger.error(f"模型调用失败: {e}", exc_info=True)
            raise LLMOperationError(f"模型调用失败: {e}") from e
        return full_text
