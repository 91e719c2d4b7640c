from __future__ import annotations

import pytest

from core.text_cleaning import append_options, clean_title, extract_options, strip_options, visible_word_count


@pytest.mark.parametrize(
    "text",
    [
        "## 第1章 开端\n少年推开了山门。",
        "普通的一段话，没有任何标题。",
        "**书名**：《剑来》\n\n第一行\n第二行",
    ],
)
def test_strip_options_round_trip(text: str) -> None:
    assert strip_options(text + "\nOptions: [A] [B]") == strip_options(text)


def test_strip_options_handles_bold_marker_and_full_width_colon() -> None:
    text = "正文内容\n\n**Options**：[继续] [重写]"
    assert strip_options(text) == "正文内容"


def test_strip_options_is_case_insensitive_and_keeps_mid_sentence_word() -> None:
    assert strip_options("正文\noptions: [a]") == "正文"
    assert strip_options("We discussed the Options available.") == "We discussed the Options available."


def test_extract_options_returns_bracket_tokens() -> None:
    assert extract_options("你好\nOptions: [玄幻修仙] [赛博朋克] [ 都市异能 ]") == ["玄幻修仙", "赛博朋克", "都市异能"]
    assert extract_options("没有选项的回复") == []


def test_append_options_replaces_existing_footer() -> None:
    result = append_options("## 第1章 开端\n正文\nOptions: [旧选项]", ["继续写下一章", "重写本章"])
    assert result == "## 第1章 开端\n正文\n\nOptions: [继续写下一章] [重写本章]"
    assert extract_options(result) == ["继续写下一章", "重写本章"]


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("**第1章 开端**", "第1章 开端"),
        ("第3章 风暴 (草稿)", "第3章 风暴"),
        ("第3章 风暴（修订版）(草稿)", "第3章 风暴"),
        ("1. 【角色档案】", "角色档案"),
        ("《剑来》", "剑来"),
        ("## 世界观 ##", "世界观"),
    ],
)
def test_clean_title(raw: str, expected: str) -> None:
    assert clean_title(raw) == expected


def test_visible_word_count_ignores_markdown_and_whitespace() -> None:
    assert visible_word_count("## 标题\n\n**加粗** `代码`\n") == 6
    assert visible_word_count("") == 0
