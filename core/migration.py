"""
配置与会话迁移 (Migration)
图书库里可能保存着不同时期的数据结构。加载时统一调用一次 migrate / session_from_dict，
之后代码只面对当前版本的 GenerationConfig 和 NovelSession。

版本说明:
    0: 早期的驼峰结构 (googleModel / openaiModel / mcpItems / targetTotalChapters ...)
    1: 当前的下划线结构，带 schema_version 字段
"""
from __future__ import annotations
import logging
import time
from dataclasses import fields
from typing import Any, Dict, Optional, Tuple

from core.schemas import (
    CONFIG_SCHEMA_VERSION, AnchorPolicy, GenerationConfig, KnowledgeItem, Message, NovelSession, new_message_id,
)

logger = logging.getLogger(__name__)

DEFAULT_NOVEL_TITLE = "未命名小说"

_LEGACY_CONFIG_KEYS = {
    "systemInstruction": "system_instruction",
    "topK": "top_k",
    "topP": "top_p",
    "maxOutputTokens": "max_output_tokens",
    "targetTotalChapters": "target_total_chapters",
    "targetWordsPerChapter": "target_words_per_chapter",
}
_DROPPED_LEGACY_KEYS = ("openaiApiKey", "thinkingBudget", "siteSettings")
_CONFIG_FIELDS = {f.name for f in fields(GenerationConfig)}


def detect_version(raw: Dict[str, Any]) -> int:
    if "schema_version" in raw:
        return int(raw["schema_version"])
    legacy_markers = ("googleModel", "openaiModel", "mcpItems", "targetTotalChapters", "systemInstruction")
    return 0 if any(k in raw for k in legacy_markers) else CONFIG_SCHEMA_VERSION


def _upgrade_v0(raw: Dict[str, Any]) -> Dict[str, Any]:
    provider = raw.get("provider", "google")
    upgraded: Dict[str, Any] = {"provider": provider}
    if provider == "openai":
        if raw.get("openaiModel"):
            upgraded["model"] = raw["openaiModel"]
        if raw.get("openaiBaseUrl"):
            upgraded["base_url"] = raw["openaiBaseUrl"]
        upgraded["api_key_env"] = "OPENAI_API_KEY"
    elif raw.get("googleModel"):
        upgraded["model"] = raw["googleModel"]
    if "temperature" in raw:
        upgraded["temperature"] = raw["temperature"]
    for old, new in _LEGACY_CONFIG_KEYS.items():
        if old in raw:
            upgraded[new] = raw[old]
    upgraded["knowledge_items"] = raw.get("mcpItems") or []
    upgraded["skill_items"] = raw.get("skillItems") or []
    if raw.get("openaiApiKey"):
        logger.warning("旧版配置中的 API Key 不会被迁移，请改用环境变量。")
    upgraded["schema_version"] = 1
    return upgraded


def _knowledge_item(raw: Any) -> KnowledgeItem:
    if isinstance(raw, KnowledgeItem):
        return raw
    return KnowledgeItem(
        name=str(raw.get("name", "")),
        content=str(raw.get("content", "")),
        is_active=bool(raw.get("is_active", raw.get("isActive", True))),
        id=str(raw.get("id", "")),
    )


def migrate(raw: Optional[Dict[str, Any]]) -> GenerationConfig:
    """把任意历史版本的配置字典迁移为当前版本的 GenerationConfig，缺失字段取默认值"""
    if not raw:
        return GenerationConfig()
    data = dict(raw)
    if detect_version(data) == 0:
        data = _upgrade_v0(data)

    unknown = set(data) - _CONFIG_FIELDS
    if unknown:
        logger.debug(f"迁移配置时忽略未知字段: {sorted(unknown)}")
    values = {k: v for k, v in data.items() if k in _CONFIG_FIELDS}
    for key in ("knowledge_items", "skill_items"):
        if key in values:
            values[key] = tuple(_knowledge_item(item) for item in values[key] or [])
    values["schema_version"] = CONFIG_SCHEMA_VERSION
    return GenerationConfig(**values)


def _pick(raw: Dict[str, Any], *keys, default=None):
    for key in keys:
        if key in raw and raw[key] is not None:
            return raw[key]
    return default


def _to_seconds(value: Any, default: float) -> float:
    if value is None:
        return default
    value = float(value)
    # 旧版本使用毫秒时间戳
    return value / 1000.0 if value > 1e11 else value


def _message(raw: Dict[str, Any], now: float) -> Message:
    return Message(
        id=str(_pick(raw, "id", default=new_message_id(now=now))),
        role=raw.get("role", "model"),
        content=raw.get("content") or "",
        timestamp=_to_seconds(raw.get("timestamp"), now),
        is_system_notice=bool(_pick(raw, "is_system_notice", "isSystemNotice", default=False)),
    )


def _anchor_policy(raw: Optional[Dict[str, Any]]) -> Optional[AnchorPolicy]:
    if not raw:
        return None
    return AnchorPolicy(
        enabled=bool(raw.get("enabled", False)),
        mode=raw.get("mode", "chapter"),
        chapter_interval=int(_pick(raw, "chapter_interval", "chapterInterval", default=20)),
        next_trigger=int(_pick(raw, "next_trigger", "nextTrigger", default=20)),
    )


def session_from_dict(raw: Dict[str, Any], now: float = None) -> NovelSession:
    """从持久化字典恢复会话；可选字段缺失时使用默认值而不是报错"""
    now = time.time() if now is None else now
    created_at = _to_seconds(_pick(raw, "created_at", "createdAt"), now)
    messages: Tuple[Message, ...] = tuple(_message(m, now) for m in raw.get("messages") or [])
    return NovelSession(
        id=str(_pick(raw, "id", default=new_message_id("novel-", now))),
        title=_pick(raw, "title", default=DEFAULT_NOVEL_TITLE),
        created_at=created_at,
        last_modified=_to_seconds(_pick(raw, "last_modified", "lastModified"), created_at),
        messages=messages,
        settings=migrate(raw.get("settings")),
        context_summary=_pick(raw, "context_summary", "contextSummary"),
        anchor_config=_anchor_policy(_pick(raw, "anchor_config", "anchorConfig")),
        snowflake_mode=bool(_pick(raw, "snowflake_mode", "snowflakeMode", default=False)),
    )
