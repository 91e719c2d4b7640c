"""
段落分类器 (Section Classifier)
按标题关键词把段落归入 基础设定 / 数据库 / 章节候选 三个区域，其余留在对话记录中。
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, List, Tuple, Iterable

from core.header_detector import CHAPTER_PATTERN, contains_keyword
from core.schemas import Section

DEFAULT_SETTINGS_KEYWORDS: Tuple[str, ...] = (
    "基础设定", "书名", "小说名", "大纲", "世界观", "概要", "背景", "梗概", "简介", "故事线",
    "核心梗", "分卷", "目录", "设定",
    "Title", "Outline", "Summary", "Setting", "Background", "Synopsis", "Storyline", "World",
)

DEFAULT_DATABASE_KEYWORDS: Tuple[str, ...] = (
    "数据库", "角色", "人物", "势力", "关系", "物品", "功法", "科技", "档案", "力量体系", "境界",
    "Database", "Character", "Faction", "Item", "Relationship", "Power System",
)

DEFAULT_TOC_KEYWORDS: Tuple[str, ...] = (
    "目录", "列表", "大纲", "细纲", "提纲",
    "Outline", "Structure", "Contents", "TOC",
)


@dataclass(frozen=True)
class RegionVocabulary:
    settings: Tuple[str, ...] = DEFAULT_SETTINGS_KEYWORDS
    database: Tuple[str, ...] = DEFAULT_DATABASE_KEYWORDS
    table_of_contents: Tuple[str, ...] = DEFAULT_TOC_KEYWORDS

    @classmethod
    def from_config(cls, parser_config: dict = None) -> "RegionVocabulary":
        parser_config = parser_config or {}
        defaults = cls()
        return cls(
            settings=tuple(parser_config.get("settings_keywords") or defaults.settings),
            database=tuple(parser_config.get("database_keywords") or defaults.database),
            table_of_contents=tuple(parser_config.get("toc_keywords") or defaults.table_of_contents),
        )


@dataclass(frozen=True)
class ClassifiedSections:
    settings: Tuple[Section, ...] = ()
    database: Tuple[Section, ...] = ()
    chapters: Tuple[Section, ...] = ()
    unclassified: Tuple[Section, ...] = ()


def deduplicate(sections: Iterable[Section]) -> List[Section]:
    """
    同名段落只保留最近一次出现的内容（后写覆盖），位置沿用第一次出现的位置。
    这样“重写本章”之类的修订会自然替换旧稿。
    """
    latest: Dict[str, Section] = {}
    for section in sections:
        latest[section.key] = section
    return list(latest.values())


def classify_title(title: str, vocabulary: RegionVocabulary = None) -> str:
    """返回 chapters / database / settings / unclassified"""
    vocabulary = vocabulary or RegionVocabulary()
    if CHAPTER_PATTERN.search(title):
        return "chapters"
    # 数据库关键词优先，避免“角色设定”被同时算进基础设定
    if contains_keyword(title, vocabulary.database):
        return "database"
    if contains_keyword(title, vocabulary.settings):
        return "settings"
    return "unclassified"


def classify_sections(sections: Iterable[Section], vocabulary: RegionVocabulary = None) -> ClassifiedSections:
    vocabulary = vocabulary or RegionVocabulary()
    buckets: Dict[str, List[Section]] = {"settings": [], "database": [], "chapters": [], "unclassified": []}
    for section in deduplicate(sections):
        buckets[classify_title(section.title, vocabulary)].append(section)
    return ClassifiedSections(
        settings=tuple(buckets["settings"]),
        database=tuple(buckets["database"]),
        chapters=tuple(buckets["chapters"]),
        unclassified=tuple(buckets["unclassified"]),
    )
