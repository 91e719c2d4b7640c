"""
小说文档重建 (Document Selector)
切分 -> 分类 -> 章节组装 的完整流水线，是对会话消息列表的纯函数选择器。
界面上的 基础设定 / 数据库 / 章节正文 / 对话记录 四个视图和统计都由这里计算。
"""
from __future__ import annotations
import re
from typing import Iterable, Tuple, Sequence

from core.assembler import assemble_chapters
from core.classifier import ClassifiedSections, RegionVocabulary, classify_sections
from core.header_detector import HeaderDetector, HeaderVocabulary
from core.schemas import Chapter, Message, NovelDocument, NovelSession, NovelStats, ROLE_USER
from core.segmenter import parseable_messages, segment_messages
from core.text_cleaning import strip_options

DEFAULT_TOTAL_CHAPTERS = 20

_TOC_HEADER = re.compile(r"^#{1,3}\s*目录", re.MULTILINE)
_TOC_LIST_LINE = re.compile(r"^\s*\d+\.\s+第[0-9零〇一二三四五六七八九十百千万两]+章", re.MULTILINE)


class DocumentParser:
    """持有词表配置的解析器，本身没有可变状态"""

    def __init__(self, header_vocabulary: HeaderVocabulary = None, region_vocabulary: RegionVocabulary = None):
        self.detector = HeaderDetector(header_vocabulary)
        self.regions = region_vocabulary or RegionVocabulary()

    @classmethod
    def from_config(cls, full_config: dict = None) -> "DocumentParser":
        parser_config = (full_config or {}).get("parser", {})
        return cls(HeaderVocabulary.from_config(parser_config), RegionVocabulary.from_config(parser_config))

    def classify(self, messages: Iterable[Message]) -> ClassifiedSections:
        return classify_sections(segment_messages(messages, self.detector), self.regions)

    def chapters(self, messages: Iterable[Message]) -> Tuple[Chapter, ...]:
        return assemble_chapters(self.classify(messages).chapters, self.regions)

    def count_chapters(self, messages: Iterable[Message]) -> int:
        return len(self.chapters(messages))

    def document(self, session: NovelSession) -> NovelDocument:
        classified = self.classify(session.messages)
        chapters = assemble_chapters(classified.chapters, self.regions)
        return NovelDocument(
            title=session.title,
            settings=classified.settings,
            database=classified.database,
            chapters=chapters,
            dialogue=render_dialogue(session.messages),
            stats=stats_for(chapters, session.settings.target_total_chapters),
        )

    def stats(self, session: NovelSession) -> NovelStats:
        return stats_for(self.chapters(session.messages), session.settings.target_total_chapters)


def stats_for(chapters: Sequence[Chapter], target_total_chapters: int) -> NovelStats:
    return NovelStats(
        current_chapters=len(chapters),
        total_chapters=target_total_chapters or DEFAULT_TOTAL_CHAPTERS,
        word_count=sum(c.word_count for c in chapters),
    )


def render_dialogue(messages: Iterable[Message]) -> str:
    """对话记录视图：去掉交互选项后按轮次拼接"""
    blocks = []
    for m in messages:
        speaker = "你" if m.role == ROLE_USER else "AI"
        blocks.append(f"**{speaker}**: {strip_options(m.content)}")
    return "\n\n---\n\n".join(blocks)


def has_table_of_contents(messages: Iterable[Message]) -> bool:
    """是否已经生成过章节目录（批量撰写正文的前置条件）"""
    for m in parseable_messages(messages):
        if _TOC_HEADER.search(m.content) or _TOC_LIST_LINE.search(m.content):
            return True
    return False


def build_document(session: NovelSession, parser: DocumentParser = None) -> NovelDocument:
    return (parser or DocumentParser()).document(session)


def novel_stats(session: NovelSession, parser: DocumentParser = None) -> NovelStats:
    return (parser or DocumentParser()).stats(session)
