"""
分级标题识别器 (Confidence-tiered Header Detector)

模型输出并不是严格的 Markdown，因此一行文字能否开启新段落按置信度分三级判断：
  1. Markdown 标题 (#, ##, ###)：一、二级标题直接接受；三级标题必须命中“强标题”词表。
  2. 独占一行的粗体 (**xxx**)：必须足够短且命中强标题词表，避免正文里的 **轰！** 把章节切碎。
  3. 简短的 "键：值" 行：只在当前没有打开任何段落时才接受，避免把对白误认为标题。
强标题词表属于配置，可在 config.yaml 的 parser.strong_headers 中调整。
"""
from __future__ import annotations
import re
from dataclasses import dataclass
from typing import Optional, Tuple, Iterable

from core.text_cleaning import clean_title

TIER_MARKDOWN = "markdown"
TIER_BOLD = "bold"
TIER_KEY_VALUE = "key_value"

CHINESE_NUMERALS = "零〇一二三四五六七八九十百千万两"
CHAPTER_PATTERN = re.compile(rf"第\s*[0-9{CHINESE_NUMERALS}]+\s*章|\bchapter\s+\d+", re.IGNORECASE)

DEFAULT_STRONG_HEADERS: Tuple[str, ...] = (
    "书名", "小说名", "简介", "大纲", "世界观", "设定", "角色", "人物", "势力", "物品",
    "目录", "梗概", "故事线", "关系", "档案",
    "Title", "Synopsis", "Outline", "World", "Setting", "Character", "Faction", "Item",
    "Contents",
)

BOLD_TITLE_MAX_LENGTH = 40
KEY_LABEL_MAX_LENGTH = 20

_MARKDOWN_HEADER = re.compile(r"^(#{1,3})(?!#)\s*(.+?)\s*#*\s*$")
_BOLD_LINE = re.compile(r"^(?:\*\*(.+?)\*\*|__(.+?)__)\s*[:：]?\s*$")
_KEY_VALUE = re.compile(r"^(?:[-+]\s+)?(.{1,%d}?)\s*[:：]\s*(.*)$" % (KEY_LABEL_MAX_LENGTH + 4))
_COLON_SPLIT = re.compile(r"\s*[:：]\s*")
_SENTENCE_PUNCTUATION = re.compile(r"[。，,！!？?“”\"「」『』…；;]")


@dataclass(frozen=True)
class HeaderMatch:
    title: str
    inline_content: str = ""
    tier: str = TIER_MARKDOWN
    level: int = 0


@dataclass(frozen=True)
class HeaderVocabulary:
    strong_headers: Tuple[str, ...] = DEFAULT_STRONG_HEADERS

    @classmethod
    def from_config(cls, parser_config: dict = None) -> "HeaderVocabulary":
        parser_config = parser_config or {}
        keywords = parser_config.get("strong_headers")
        if not keywords:
            return cls()
        return cls(strong_headers=tuple(str(k) for k in keywords))

    def is_strong(self, title: str) -> bool:
        if CHAPTER_PATTERN.search(title):
            return True
        return contains_keyword(title, self.strong_headers)


def contains_keyword(title: str, keywords: Iterable[str]) -> bool:
    """大小写不敏感的子串匹配"""
    folded = title.casefold()
    return any(k.casefold() in folded for k in keywords if k)


class HeaderDetector:
    """判断单行文本是否开启一个新段落"""

    def __init__(self, vocabulary: HeaderVocabulary = None):
        self.vocabulary = vocabulary or HeaderVocabulary()

    def detect(self, line: str, section_open: bool) -> Optional[HeaderMatch]:
        stripped = line.strip()
        if not stripped:
            return None
        return (
            self._markdown_header(stripped)
            or self._bold_header(stripped)
            or (None if section_open else self._key_value_header(stripped))
        )

    def _markdown_header(self, line: str) -> Optional[HeaderMatch]:
        m = _MARKDOWN_HEADER.match(line)
        if not m:
            return None
        level = len(m.group(1))
        title = clean_title(m.group(2))
        if not title:
            return None
        if level <= 2 or self.vocabulary.is_strong(title):
            return HeaderMatch(title=title, tier=TIER_MARKDOWN, level=level)
        return None

    def _bold_header(self, line: str) -> Optional[HeaderMatch]:
        m = _BOLD_LINE.match(line)
        if not m:
            return None
        inner = (m.group(1) or m.group(2) or "").strip()
        if not inner or len(inner) >= BOLD_TITLE_MAX_LENGTH:
            return None
        if not self.vocabulary.is_strong(inner):
            return None
        # **书名：《剑来》** 这种写法拆成标题与行内内容
        parts = _COLON_SPLIT.split(inner, maxsplit=1)
        title = clean_title(parts[0])
        if not title:
            return None
        inline = parts[1].strip() if len(parts) > 1 else ""
        return HeaderMatch(title=title, inline_content=inline, tier=TIER_BOLD)

    def _key_value_header(self, line: str) -> Optional[HeaderMatch]:
        m = _KEY_VALUE.match(line)
        if not m:
            return None
        raw_label, rest = m.group(1), m.group(2).strip()
        if rest.startswith("//"):
            return None
        if _SENTENCE_PUNCTUATION.search(raw_label):
            return None
        title = clean_title(raw_label)
        if not title or len(title) > KEY_LABEL_MAX_LENGTH:
            return None
        return HeaderMatch(title=title, inline_content=rest, tier=TIER_KEY_VALUE)
