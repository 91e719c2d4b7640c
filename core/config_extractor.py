"""
配置自动提取器 (Config Auto-Extractor)
在模型消息生成完毕后扫描其中的指令性内容（书名、预计总章节数、每章字数），
只在数值确实变化时才产出配置补丁，重复的声明不会造成重复写入。
"""
from __future__ import annotations
import logging
import re
from dataclasses import dataclass
from typing import Optional, List

from core.assembler import chinese_numeral_to_int
from core.schemas import NovelSession
from core.store import ConfigPatched, TitleChanged
from core.text_cleaning import clean_title, strip_options

logger = logging.getLogger(__name__)

TITLE_MAX_LENGTH = 30
MIN_TOTAL_CHAPTERS = 10
MIN_WORDS_PER_CHAPTER = 100

_CN = "零〇一二三四五六七八九十百千万两"
_NUMBER = rf"([0-9]+|[{_CN}]+)"

TITLE_PATTERN = re.compile(r"(?:书名|小说名)[:：]\s*《?([^》\n]+)》?")

CHAPTER_CUES = ("全书预计", "本书共", "预计", "计划", "总共", "共", "规划", "设定为", "包含", "Total", "target")
WORD_CUES = ("字数目标", "每章", "单章", "每一章", "字数", "设定为", "words")

TOTAL_CHAPTERS_PATTERN = re.compile(
    rf"(?:{'|'.join(CHAPTER_CUES)})[^\d\n第{_CN}]{{0,10}}?{_NUMBER}\s*章", re.IGNORECASE
)
WORDS_PER_CHAPTER_PATTERN = re.compile(
    rf"(?:{'|'.join(WORD_CUES)})[^\d\n{_CN}]{{0,10}}?{_NUMBER}\s*字", re.IGNORECASE
)


@dataclass(frozen=True)
class ConfigDirectives:
    title: Optional[str] = None
    total_chapters: Optional[int] = None
    words_per_chapter: Optional[int] = None


def extract_directives(content: str) -> ConfigDirectives:
    """只在去掉交互选项后的正文中查找，选项按钮里的数字不算数"""
    text = strip_options(content)
    return ConfigDirectives(
        title=_extract_title(text),
        total_chapters=_extract_number(TOTAL_CHAPTERS_PATTERN, text, MIN_TOTAL_CHAPTERS),
        words_per_chapter=_extract_number(WORDS_PER_CHAPTER_PATTERN, text, MIN_WORDS_PER_CHAPTER - 1),
    )


def _extract_title(text: str) -> Optional[str]:
    m = TITLE_PATTERN.search(text)
    if not m:
        return None
    raw = m.group(1)
    if "Options" in raw or len(raw) >= TITLE_MAX_LENGTH:
        return None
    return clean_title(raw) or None


def _extract_number(pattern: re.Pattern, text: str, floor: int) -> Optional[int]:
    m = pattern.search(text)
    if not m:
        return None
    value = chinese_numeral_to_int(m.group(1))
    if value is None or value <= floor:
        return None
    return value


def config_events(content: str, session: NovelSession) -> List[object]:
    """根据一条已完成的模型消息计算需要派发的事件（可能为空）"""
    directives = extract_directives(content)
    events: List[object] = []

    if directives.title and directives.title != session.title:
        logger.info(f"自动识别书名: {directives.title}")
        events.append(TitleChanged(title=directives.title))

    patch = {}
    if directives.total_chapters and directives.total_chapters != session.settings.target_total_chapters:
        patch["target_total_chapters"] = directives.total_chapters
    if directives.words_per_chapter and directives.words_per_chapter != session.settings.target_words_per_chapter:
        patch["target_words_per_chapter"] = directives.words_per_chapter
    if patch:
        logger.info(f"自动更新创作参数: {patch}")
        events.append(ConfigPatched(patch=patch))
    return events
