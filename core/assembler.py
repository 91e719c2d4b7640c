"""
章节组装器 (Chapter Assembler)
从章节候选段落中剔除目录/大纲类误判，按章节序号排序并统计字数。
对相同的输入总是产生完全相同的输出，界面每次流式刷新都会重新调用。
"""
from __future__ import annotations
import re
from typing import Optional, Tuple, Iterable

from core.classifier import RegionVocabulary
from core.header_detector import CHINESE_NUMERALS, contains_keyword
from core.schemas import Chapter, Section
from core.text_cleaning import visible_word_count

_CHAPTER_NUMBER = re.compile(rf"第\s*([0-9{CHINESE_NUMERALS}]+)\s*章")
_ENGLISH_CHAPTER_NUMBER = re.compile(r"\bchapter\s+(\d+)", re.IGNORECASE)

_DIGITS = {"零": 0, "〇": 0, "一": 1, "二": 2, "两": 2, "三": 3, "四": 4,
           "五": 5, "六": 6, "七": 7, "八": 8, "九": 9}
_UNITS = {"十": 10, "百": 100, "千": 1000, "万": 10000}


def chinese_numeral_to_int(text: str) -> Optional[int]:
    """把 “十二”、“一百零五”、“二〇二” 这类中文数字转换为整数，无法解析时返回 None"""
    if not text:
        return None
    if text.isdigit():
        return int(text)
    if not any(ch in _UNITS for ch in text):
        # 逐位写法，例如 “二〇二”
        if all(ch in _DIGITS for ch in text):
            return int("".join(str(_DIGITS[ch]) for ch in text))
        return None

    total, section, number = 0, 0, 0
    for ch in text:
        if ch in _DIGITS:
            number = _DIGITS[ch]
        elif ch in _UNITS:
            unit = _UNITS[ch]
            if unit == 10000:
                total += (section + number) * unit
                section = 0
            else:
                section += (number or 1) * unit
            number = 0
        else:
            return None
    return total + section + number


def parse_chapter_number(title: str) -> Optional[int]:
    m = _CHAPTER_NUMBER.search(title)
    if m:
        return chinese_numeral_to_int(m.group(1))
    m = _ENGLISH_CHAPTER_NUMBER.search(title)
    if m:
        return int(m.group(1))
    return None


def is_table_of_contents(title: str, vocabulary: RegionVocabulary = None) -> bool:
    vocabulary = vocabulary or RegionVocabulary()
    return contains_keyword(title, vocabulary.table_of_contents)


def assemble_chapters(candidates: Iterable[Section], vocabulary: RegionVocabulary = None) -> Tuple[Chapter, ...]:
    vocabulary = vocabulary or RegionVocabulary()
    # 1. 剔除目录/大纲：即便标题里也有 “第N章”
    bodies = [s for s in candidates if not is_table_of_contents(s.title, vocabulary)]

    # 2. 按序号排序，无法解析的排在最后；同序号按时间先后（稳定排序）
    numbered = [(parse_chapter_number(s.title), position, s) for position, s in enumerate(bodies)]
    numbered.sort(key=lambda item: (item[0] is None, item[0] or 0, item[2].timestamp, item[1]))

    # 3. 生成章节对象，id 由来源消息与段落序号组成，流式更新期间保持稳定
    return tuple(
        Chapter(
            id=f"{section.source_message_id}-{section.ordinal}",
            message_id=section.source_message_id,
            title=section.title,
            content=section.content,
            word_count=visible_word_count(section.content),
            number=number,
        )
        for number, _, section in numbered
    )
