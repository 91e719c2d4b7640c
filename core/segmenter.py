"""
段落切分器 (Section Segmenter)
逐行扫描清洗后的消息文本，按标题识别器的结果切分成带标题的段落。
纯函数：消息列表 -> 有序段落列表。
"""
from __future__ import annotations
from typing import List, Tuple, Iterable

from core.header_detector import HeaderDetector
from core.schemas import Message, Section
from core.text_cleaning import strip_options

_FENCE = "```"


def segment_text(text: str, detector: HeaderDetector = None) -> List[Tuple[str, str]]:
    """
    将一条消息的文本切分为 (标题, 内容) 列表。
    第一个标题之前的前言不属于任何段落；代码块内的行不会被当作标题。
    """
    detector = detector or HeaderDetector()
    sections: List[Tuple[str, str]] = []
    current_title = None
    buffer: List[str] = []
    in_fence = False

    for line in text.split("\n"):
        if line.strip().startswith(_FENCE):
            in_fence = not in_fence
        match = None if in_fence else detector.detect(line, section_open=current_title is not None)
        if match:
            _flush(sections, current_title, buffer)
            current_title = match.title
            buffer = [match.inline_content] if match.inline_content else []
        elif current_title is not None:
            buffer.append(line)

    _flush(sections, current_title, buffer)
    return sections


def _flush(sections: List[Tuple[str, str]], title: str, buffer: List[str]):
    if title is None:
        return
    content = "\n".join(buffer).strip()
    # 没有正文的标题（例如目录中逐行列出的章节名）不构成段落
    if content:
        sections.append((title, content))


def parseable_messages(messages: Iterable[Message]) -> List[Message]:
    """只有模型消息参与文档重建；系统提示仅用于展示"""
    return [m for m in messages if m.is_model and not m.is_system_notice]


def segment_messages(messages: Iterable[Message], detector: HeaderDetector = None) -> List[Section]:
    """对每条模型消息分别切分并拼接，段落带上来源消息的 id 和时间戳"""
    detector = detector or HeaderDetector()
    sections: List[Section] = []
    for message in parseable_messages(messages):
        text = strip_options(message.content)
        if not text:
            continue
        for ordinal, (title, content) in enumerate(segment_text(text, detector)):
            sections.append(Section(
                title=title,
                content=content,
                source_message_id=message.id,
                timestamp=message.timestamp,
                ordinal=ordinal,
            ))
    return sections
