"""
模型上下文构建
界面始终解析完整的消息列表，但发送给模型的历史在存在剧情锚点时会被截断为最近几条，
锚点摘要则注入到系统指令中。这样文档长度不受限，而模型上下文保持有界。
"""
from __future__ import annotations
from typing import List, Optional, Sequence

from core.schemas import GenerationConfig, Message

DEFAULT_HISTORY_TAIL = 6


def working_history(messages: Sequence[Message], context_summary: Optional[str], tail: int = DEFAULT_HISTORY_TAIL) -> List[Message]:
    """系统提示与错误提示不发送给模型；有锚点时只保留最近 tail 条"""
    history = [m for m in messages if not m.is_system_notice]
    if context_summary and len(history) > tail:
        return history[-tail:]
    return history


def build_system_instruction(
    config: GenerationConfig,
    context_summary: Optional[str] = None,
    default_instruction: str = "",
    snowflake_addendum: str = "",
) -> str:
    """系统指令 = 基础指令 + 剧情锚点 + 激活的知识库 + 激活的技能 (+ 雪花写作法)"""
    instruction = config.system_instruction or default_instruction

    if context_summary:
        instruction += (
            "\n\n=== 剧情锚点 (Archive Context) ===\n"
            "这是前文的剧情与设定浓缩总结。请基于此继续创作，无需重复之前的内容。\n"
            f"{context_summary}\n=== 锚点结束 ===\n"
        )

    knowledge = config.active_knowledge_items
    if knowledge:
        instruction += "\n\n=== MCP 知识库/上下文 (Knowledge Base) ===\n"
        for item in knowledge:
            instruction += f"\n[{item.name}]:\n{item.content}\n"
        instruction += "\n=== 请在创作时参考以上资料 ===\n"

    skills = config.active_skill_items
    if skills:
        instruction += "\n\n=== 写作技能 (Skills) ===\n"
        for item in skills:
            instruction += f"\n[{item.name}]:\n{item.content}\n"
        instruction += "\n=== 请在写作中运用以上技能 ===\n"

    if snowflake_addendum:
        instruction += f"\n\n{snowflake_addendum}\n"

    return instruction
