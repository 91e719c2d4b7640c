"""
业务对象定义 (Schemas)
定义系统各层级间传递的强类型数据结构，确保数据流透明且可预测。
会话及其消息均为不可变快照：任何修改都会产生新的对象，派生视图只从快照重新计算。
"""
from __future__ import annotations
import itertools
import re
import time
from dataclasses import dataclass, field, asdict
from typing import Optional, List, Tuple, Dict, Any

ROLE_USER = "user"
ROLE_MODEL = "model"

ANCHOR_MODES = ("chapter", "volume")
ANCHOR_INTERVALS = (20, 50)

CONFIG_SCHEMA_VERSION = 1

_id_counter = itertools.count(1)


def new_message_id(prefix: str = "", now: float = None) -> str:
    """生成近似单调递增的消息 ID"""
    now = time.time() if now is None else now
    return f"{prefix}{int(now * 1000)}-{next(_id_counter)}"


@dataclass(frozen=True)
class Message:
    """对话中的一条消息。content 在流式生成期间会被整体替换。"""
    id: str
    role: str
    content: str
    timestamp: float
    is_system_notice: bool = False

    @property
    def is_model(self) -> bool:
        return self.role == ROLE_MODEL


def make_message(role: str, content: str, prefix: str = "", is_system_notice: bool = False, now: float = None) -> Message:
    now = time.time() if now is None else now
    return Message(
        id=new_message_id(prefix, now),
        role=role,
        content=content,
        timestamp=now,
        is_system_notice=is_system_notice,
    )


@dataclass(frozen=True)
class KnowledgeItem:
    """知识库 / 技能条目，只有激活的条目会注入系统指令"""
    name: str
    content: str
    is_active: bool = True
    id: str = ""


@dataclass(frozen=True)
class GenerationConfig:
    """
    生成配置 (版本化)
    由用户设置编辑和配置自动提取器共同修改。API Key 不保存在这里，只保存环境变量名。
    """
    provider: str = "google"
    model: str = "gemini-3-flash-preview"
    temperature: float = 0.8
    top_p: float = 0.95
    top_k: int = 64
    max_output_tokens: int = 8192
    base_url: str = ""
    api_key_env: str = ""
    system_instruction: str = ""
    target_total_chapters: int = 20
    target_words_per_chapter: int = 3000
    knowledge_items: Tuple[KnowledgeItem, ...] = ()
    skill_items: Tuple[KnowledgeItem, ...] = ()
    schema_version: int = CONFIG_SCHEMA_VERSION

    @property
    def active_knowledge_items(self) -> List[KnowledgeItem]:
        return [item for item in self.knowledge_items if item.is_active]

    @property
    def active_skill_items(self) -> List[KnowledgeItem]:
        return [item for item in self.skill_items if item.is_active]


@dataclass(frozen=True)
class AnchorPolicy:
    """自动锚定策略。next_trigger 只能前移。"""
    enabled: bool = False
    mode: str = "chapter"
    chapter_interval: int = 20
    next_trigger: int = 20

    def advanced(self) -> "AnchorPolicy":
        return AnchorPolicy(
            enabled=self.enabled,
            mode=self.mode,
            chapter_interval=self.chapter_interval,
            next_trigger=self.next_trigger + self.chapter_interval,
        )


@dataclass(frozen=True)
class NovelSession:
    """
    小说会话 (领域模型)
    messages 是唯一的事实来源，设定、数据库、章节和统计都是对它的纯函数重算。
    """
    id: str
    title: str
    created_at: float
    last_modified: float
    messages: Tuple[Message, ...] = ()
    settings: GenerationConfig = field(default_factory=GenerationConfig)
    context_summary: Optional[str] = None
    anchor_config: Optional[AnchorPolicy] = None
    snowflake_mode: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def find_message(self, message_id: str) -> Optional[Message]:
        return next((m for m in self.messages if m.id == message_id), None)


@dataclass(frozen=True)
class Section:
    """从消息中切分出的带标题文本块，文档重建的最小单位"""
    title: str
    content: str
    source_message_id: str
    timestamp: float
    ordinal: int = 0

    @property
    def key(self) -> str:
        return normalize_title_key(self.title)


def normalize_title_key(title: str) -> str:
    """去掉所有空白并做大小写折叠，作为同名段落的合并键"""
    return re.sub(r"\s+", "", title).casefold()


@dataclass(frozen=True)
class Chapter:
    id: str
    message_id: str
    title: str
    content: str
    word_count: int
    number: Optional[int] = None


@dataclass(frozen=True)
class NovelStats:
    current_chapters: int
    total_chapters: int
    word_count: int


@dataclass(frozen=True)
class NovelDocument:
    """由消息列表重建出的小说文档视图"""
    title: str
    settings: Tuple[Section, ...]
    database: Tuple[Section, ...]
    chapters: Tuple[Chapter, ...]
    dialogue: str
    stats: NovelStats


# --- 业务执行结果 ---

@dataclass
class ChatResult:
    """单轮对话执行结果"""
    message_id: str
    content: str
    cancelled: bool = False
    options: List[str] = field(default_factory=list)


@dataclass
class AnchorOutcome:
    """剧情锚定执行结果"""
    succeeded: bool
    digest: Optional[str] = None
    error: Optional[str] = None
    cancelled: bool = False


@dataclass
class BatchReport:
    """批量生成执行结果。已完成的章节永远不会回滚。"""
    requested: int
    completed: int = 0
    status: str = "completed"  # completed | cancelled | failed
    anchors_triggered: int = 0
    error: Optional[str] = None


@dataclass
class OptimizationDraft:
    """章节优化 / 重写的候选稿，确认前不会写入消息"""
    kind: str  # chapter | selection
    target_message_id: str
    original_content: str
    full_original_text: str
    new_content: str = ""
    cancelled: bool = False
