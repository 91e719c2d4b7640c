from __future__ import annotations

from core.migration import DEFAULT_NOVEL_TITLE, detect_version, migrate, session_from_dict
from core.schemas import AnchorPolicy, GenerationConfig, KnowledgeItem


def test_legacy_camel_case_config_is_upgraded() -> None:
    legacy = {
        "provider": "openai",
        "googleModel": "gemini-pro",
        "openaiModel": "gpt-4o",
        "openaiBaseUrl": "https://api.example.com/v1",
        "openaiApiKey": "sk-should-not-survive",
        "temperature": 0.6,
        "topK": 40,
        "systemInstruction": "你是助手",
        "targetTotalChapters": 80,
        "targetWordsPerChapter": 2500,
        "mcpItems": [{"id": "1", "name": "世界观", "content": "赛博修仙", "isActive": False}],
        "thinkingBudget": 1024,
    }
    assert detect_version(legacy) == 0

    config = migrate(legacy)
    assert config.provider == "openai"
    assert config.model == "gpt-4o"
    assert config.base_url == "https://api.example.com/v1"
    assert config.api_key_env == "OPENAI_API_KEY"
    assert config.temperature == 0.6
    assert config.top_k == 40
    assert config.system_instruction == "你是助手"
    assert (config.target_total_chapters, config.target_words_per_chapter) == (80, 2500)
    assert config.knowledge_items == (KnowledgeItem(name="世界观", content="赛博修仙", is_active=False, id="1"),)
    assert config.schema_version == 1
    assert "sk-should-not-survive" not in repr(config)


def test_current_config_drops_unknown_fields_and_defaults_missing() -> None:
    config = migrate({"schema_version": 1, "model": "gemini-2.5-pro", "colour": "blue"})
    assert config.model == "gemini-2.5-pro"
    assert config.target_total_chapters == GenerationConfig().target_total_chapters


def test_empty_config_gives_defaults() -> None:
    assert migrate(None) == GenerationConfig()


def test_session_from_legacy_dict_defaults_optional_fields() -> None:
    raw = {
        "id": "1700000000000",
        "createdAt": 1700000000000,
        "lastModified": 1700000005000,
        "messages": [
            {"id": "a", "role": "user", "content": "你好", "timestamp": 1700000001000},
            {"id": "b", "role": "model", "content": "欢迎", "timestamp": 1700000002000},
        ],
        "settings": {"googleModel": "gemini-pro"},
    }
    session = session_from_dict(raw)
    assert session.title == DEFAULT_NOVEL_TITLE
    assert session.created_at == 1700000000.0
    assert session.last_modified == 1700000005.0
    assert [m.id for m in session.messages] == ["a", "b"]
    assert session.messages[0].timestamp == 1700000001.0
    assert session.context_summary is None
    assert session.anchor_config is None
    assert session.snowflake_mode is False
    assert session.settings.model == "gemini-pro"


def test_session_round_trip_through_dict() -> None:
    raw = {
        "id": "n1",
        "title": "剑来",
        "created_at": 10.0,
        "last_modified": 20.0,
        "messages": [{"id": "x", "role": "model", "content": "锚点", "timestamp": 15.0, "is_system_notice": True}],
        "settings": {"schema_version": 1, "target_total_chapters": 60},
        "context_summary": "摘要",
        "anchor_config": {"enabled": True, "mode": "chapter", "chapter_interval": 50, "next_trigger": 100},
        "snowflake_mode": True,
    }
    session = session_from_dict(raw)
    assert session.anchor_config == AnchorPolicy(enabled=True, mode="chapter", chapter_interval=50, next_trigger=100)
    assert session.messages[0].is_system_notice is True
    assert session_from_dict(session.to_dict()) == session
