"""
文本清洗工具
处理模型输出末尾的交互选项 (Options footer)、标题净化以及可见字数统计。
"""
import re
from typing import List

# 从 "Options:" 行开始一直到文本末尾都属于交互选项
OPTIONS_PATTERN = re.compile(r"(?:^|\n)\s*(?:\*\*|__)?Options(?:\*\*|__)?[:：]([\s\S]*)$", re.IGNORECASE)
OPTION_TOKEN_PATTERN = re.compile(r"\[(.*?)\]")

_LEADING_MARKS = re.compile(r"^[#*_>\s`]+")
_TRAILING_MARKS = re.compile(r"[#*_`]+$")
_LIST_NUMBER = re.compile(r"^\d+\.\s*")
_EMPHASIS = re.compile(r"\*\*|__|[*`]")
_BRACKETS = re.compile(r"[\[\]【】《》]")
_TRAILING_PAREN = re.compile(r"\s*(?:\([^()]*\)|（[^（）]*）)\s*$")
_INVISIBLE = re.compile(r"[#*`\s]")


def strip_options(text: str) -> str:
    """去掉末尾的交互选项并裁剪空白"""
    if not text:
        return ""
    return OPTIONS_PATTERN.sub("", text).strip()


def extract_options(text: str) -> List[str]:
    """提取交互选项中的 [..] 快捷回复"""
    if not text:
        return []
    match = OPTIONS_PATTERN.search(text)
    if not match:
        return []
    options = [token.strip() for token in OPTION_TOKEN_PATTERN.findall(match.group(1))]
    return [o for o in options if o]


def append_options(text: str, options: List[str]) -> str:
    """为正文重新追加一组交互选项"""
    footer = " ".join(f"[{o}]" for o in options)
    return f"{strip_options(text)}\n\nOptions: {footer}"


def clean_title(raw_title: str) -> str:
    """
    标题净化：去掉 Markdown 强调符、括号字符、列表序号以及末尾的括号备注
    （例如 "(草稿)"、"（修订版）"）。
    """
    if not raw_title:
        return ""
    title = _LEADING_MARKS.sub("", raw_title)
    title = _TRAILING_MARKS.sub("", title)
    title = _LIST_NUMBER.sub("", title)
    title = _EMPHASIS.sub("", title)
    title = _BRACKETS.sub("", title)
    # 备注可能连续出现多个
    previous = None
    while previous != title:
        previous = title
        title = _TRAILING_PAREN.sub("", title)
    return title.strip()


def visible_word_count(text: str) -> int:
    """可见字数：去掉 Markdown 符号和空白后的字符数"""
    if not text:
        return 0
    return len(_INVISIBLE.sub("", text))
