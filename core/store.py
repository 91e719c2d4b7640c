"""
会话状态仓库 (Session Store)
用显式的事件 + reducer 管理会话：每次派发都会产生新的不可变快照，
派生视图（设定、数据库、章节、统计）只从快照重新计算，不会在原地修改。
同时持有唯一的“正在生成”槽位。
"""
from __future__ import annotations
import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, fields, replace
from typing import Callable, Dict, Any, List, Tuple, Optional

from core.exceptions import ConfigurationError, GenerationBusyError
from core.schemas import (
    ANCHOR_INTERVALS, ANCHOR_MODES, AnchorPolicy, GenerationConfig, KnowledgeItem, Message, NovelSession,
)

logger = logging.getLogger(__name__)


# --- 事件定义 ---

@dataclass(frozen=True)
class MessagesAppended:
    messages: Tuple[Message, ...]

@dataclass(frozen=True)
class MessageContentReplaced:
    message_id: str
    content: str

@dataclass(frozen=True)
class MessagesReplaced:
    messages: Tuple[Message, ...]

@dataclass(frozen=True)
class ConfigPatched:
    patch: Dict[str, Any]

@dataclass(frozen=True)
class TitleChanged:
    title: str

@dataclass(frozen=True)
class CompactionCommitted:
    """锚定完成：整体替换消息列表并写入摘要，必须是一次原子更新"""
    messages: Tuple[Message, ...]
    context_summary: str

@dataclass(frozen=True)
class AnchorPolicyChanged:
    policy: AnchorPolicy

@dataclass(frozen=True)
class AnchorTriggerAdvanced:
    pass

@dataclass(frozen=True)
class SnowflakeModeChanged:
    enabled: bool


_CONFIG_FIELDS = {f.name for f in fields(GenerationConfig)}


def patch_config(config: GenerationConfig, patch: Dict[str, Any]) -> GenerationConfig:
    """按字段后写覆盖，未知字段直接报错"""
    unknown = set(patch) - _CONFIG_FIELDS
    if unknown:
        raise ConfigurationError(f"未知的配置字段: {sorted(unknown)}")
    values = dict(patch)
    for key in ("knowledge_items", "skill_items"):
        if key in values:
            values[key] = tuple(
                item if isinstance(item, KnowledgeItem) else KnowledgeItem(**item) for item in values[key]
            )
    return replace(config, **values)


def validate_anchor_policy(policy: AnchorPolicy):
    if policy.chapter_interval not in ANCHOR_INTERVALS:
        raise ConfigurationError(f"锚定间隔只能是 {ANCHOR_INTERVALS}，收到: {policy.chapter_interval}")
    if policy.mode not in ANCHOR_MODES:
        raise ConfigurationError(f"未知的锚定模式: {policy.mode}")


def reduce(session: NovelSession, event, now: float) -> NovelSession:
    """纯函数：根据事件计算新的会话快照"""
    if isinstance(event, MessagesAppended):
        return replace(session, messages=session.messages + tuple(event.messages), last_modified=now)

    if isinstance(event, MessageContentReplaced):
        messages = tuple(
            replace(m, content=event.content) if m.id == event.message_id else m for m in session.messages
        )
        return replace(session, messages=messages, last_modified=now)

    if isinstance(event, MessagesReplaced):
        return replace(session, messages=tuple(event.messages), last_modified=now)

    if isinstance(event, ConfigPatched):
        return replace(session, settings=patch_config(session.settings, event.patch), last_modified=now)

    if isinstance(event, TitleChanged):
        return replace(session, title=event.title, last_modified=now)

    if isinstance(event, CompactionCommitted):
        return replace(
            session, messages=tuple(event.messages), context_summary=event.context_summary, last_modified=now
        )

    if isinstance(event, AnchorPolicyChanged):
        validate_anchor_policy(event.policy)
        policy = event.policy
        current = session.anchor_config
        if current and policy.next_trigger < current.next_trigger:
            policy = replace(policy, next_trigger=current.next_trigger)
        return replace(session, anchor_config=policy, last_modified=now)

    if isinstance(event, AnchorTriggerAdvanced):
        if not session.anchor_config:
            return session
        return replace(session, anchor_config=session.anchor_config.advanced(), last_modified=now)

    if isinstance(event, SnowflakeModeChanged):
        return replace(session, snowflake_mode=event.enabled, last_modified=now)

    raise ValueError(f"未知的事件类型: {type(event).__name__}")


class SessionStore:
    """
    单个会话的状态容器。
    dispatch 是唯一的写入口；订阅者（例如防抖保存器）在每次变更后收到新快照。
    """

    def __init__(self, session: NovelSession, clock: Callable[[], float] = time.time):
        self._state = session
        self._clock = clock
        self._listeners: List[Callable[[NovelSession], None]] = []
        self._generating = False
        self._slot_lock = threading.Lock()

    @property
    def state(self) -> NovelSession:
        return self._state

    @property
    def is_generating(self) -> bool:
        return self._generating

    def dispatch(self, event) -> NovelSession:
        self._state = reduce(self._state, event, self._clock())
        for listener in list(self._listeners):
            listener(self._state)
        return self._state

    def subscribe(self, listener: Callable[[NovelSession], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)
        return unsubscribe

    def apply_config_patch(self, partial: Dict[str, Any]) -> NovelSession:
        """供设置界面调用的配置修改接口，幂等、按字段后写覆盖"""
        return self.dispatch(ConfigPatched(patch=dict(partial)))

    def replace_messages(self, messages) -> NovelSession:
        return self.dispatch(MessagesReplaced(messages=tuple(messages)))

    @contextmanager
    def generation_slot(self):
        """占用唯一的生成槽位，无论成功、失败还是取消都会释放"""
        with self._slot_lock:
            if self._generating:
                raise GenerationBusyError("AI 正在生成中，请稍后再试")
            self._generating = True
        try:
            yield self
        finally:
            self._generating = False

    def message(self, message_id: str) -> Optional[Message]:
        return self._state.find_message(message_id)
