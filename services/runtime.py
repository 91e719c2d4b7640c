"""
运行时装配 (Novel Runtime)
把会话仓库、生成提供者、文档解析器与各业务服务组装在一起。
各服务只通过 runtime 访问共享依赖，测试时可以替换提供者、时钟与 sleep。
"""
from __future__ import annotations
import logging
import time
import uuid
from typing import Callable, Iterable, List, Optional, Tuple

from config import load_environment
from config.loader import load_config, section
from core.config_extractor import config_events
from core.context import DEFAULT_HISTORY_TAIL, working_history
from core.document import DocumentParser, build_document, novel_stats
from core.logger import setup_logging
from core.migration import DEFAULT_NOVEL_TITLE, migrate
from core.schemas import (
    AnchorPolicy, ChatResult, Message, NovelDocument, NovelSession, NovelStats, make_message, ROLE_MODEL,
)
from core.store import MessageContentReplaced, MessagesAppended, SessionStore, SnowflakeModeChanged
from core.text_cleaning import clean_title
from infra.llm.provider import LangChainGenerationProvider
from infra.storage.state_store import DebouncedSaver, LibraryWriter, default_library_path
from prompts import render_prompt
from services.anchor_service import AnchorCompactor
from services.batch_service import BatchOrchestrator
from services.chapter_service import ChapterService
from services.chat_service import ChatService
from services.streaming import DEFAULT_COMMIT_INTERVAL

logger = logging.getLogger(__name__)

DEFAULT_FOLLOW_UP_OPTIONS = ["继续写下一章", "重写本章", "精修本章", "生成本章细纲"]
DECONSTRUCTION_TITLE = "小说拆解分析"


def default_anchor_policy(anchor_config: dict = None) -> AnchorPolicy:
    anchor_config = anchor_config or {}
    interval = anchor_config.get("chapter_interval", 20)
    return AnchorPolicy(
        enabled=anchor_config.get("enabled", False),
        mode=anchor_config.get("mode", "chapter"),
        chapter_interval=interval,
        next_trigger=anchor_config.get("next_trigger", interval),
    )


def new_session(full_config: dict = None, now: float = None, title: str = None, welcome: bool = True) -> NovelSession:
    """新建一本小说：默认配置、默认锚定策略，以及一条欢迎消息"""
    full_config = full_config if full_config is not None else load_config()
    now = time.time() if now is None else now
    messages = ()
    if welcome:
        messages = (make_message(ROLE_MODEL, render_prompt("welcome_message"), prefix="welcome-", now=now),)
    return NovelSession(
        id=uuid.uuid4().hex,
        title=title or DEFAULT_NOVEL_TITLE,
        created_at=now,
        last_modified=now,
        messages=messages,
        settings=migrate(section(full_config, "generation")),
        anchor_config=default_anchor_policy(section(full_config, "anchor")),
    )


def deconstruction_title(source: str) -> str:
    """拆解任务的小说名：链接无法直接看出书名，使用通用名称"""
    if source.startswith("http"):
        return DECONSTRUCTION_TITLE
    return f"拆解：{clean_title(source)}"


class NovelRuntime:
    def __init__(
        self,
        store: SessionStore,
        provider,
        full_config: dict,
        parser: DocumentParser = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.provider = provider
        self.full_config = full_config
        self.parser = parser or DocumentParser.from_config(full_config)
        self.sleep = sleep
        self.clock = clock

        app_config = section(full_config, "app")
        batch_config = section(full_config, "batch")
        self.history_tail = section(full_config, "context").get("history_tail", DEFAULT_HISTORY_TAIL)
        self.commit_interval = section(full_config, "streaming").get("commit_interval_seconds", DEFAULT_COMMIT_INTERVAL)
        self.long_conversation_threshold = app_config.get("long_conversation_hint", 50)
        self.batch_pause = batch_config.get("pause_seconds", 1.0)
        self.follow_up_options = list(batch_config.get("follow_up_options") or DEFAULT_FOLLOW_UP_OPTIONS)

        self.chat = ChatService(self)
        self.anchor = AnchorCompactor(self)
        self.batch = BatchOrchestrator(self)
        self.chapters = ChapterService(self)
        self.saver: Optional[DebouncedSaver] = None
        self._unsubscribe_saver = None

    @property
    def session(self) -> NovelSession:
        return self.store.state

    def history(self, exclude_ids: Iterable[str] = ()) -> List[Message]:
        """发送给模型的工作历史"""
        excluded = set(exclude_ids)
        messages = [m for m in self.store.state.messages if m.id not in excluded]
        return working_history(messages, self.store.state.context_summary, self.history_tail)

    def extra_instruction(self) -> str:
        if self.store.state.snowflake_mode:
            return render_prompt("snowflake_addendum")
        return ""

    def chapter_count(self) -> int:
        return self.parser.count_chapters(self.store.state.messages)

    def apply_config_directives(self, content: str):
        for event in config_events(content, self.store.state):
            self.store.dispatch(event)

    def append_notice(self, content: str) -> Message:
        notice = make_message(ROLE_MODEL, content, prefix="sys-notice-", is_system_notice=True)
        self.store.dispatch(MessagesAppended(messages=(notice,)))
        return notice

    def append_error_notice(self, error: Exception) -> Message:
        return self.append_notice(render_prompt("error_message", error=str(error) or "Unknown error"))

    def set_snowflake_mode(self, enabled: bool) -> NovelSession:
        logger.info(f"雪花写作法模式: {'开启' if enabled else '关闭'}")
        return self.store.dispatch(SnowflakeModeChanged(enabled=enabled))

    def edit_message(self, message_id: str, content: str) -> NovelSession:
        """用户手动编辑某条消息"""
        if self.store.message(message_id) is None:
            raise KeyError(f"消息不存在: {message_id}")
        return self.store.dispatch(MessageContentReplaced(message_id=message_id, content=content))

    def document(self) -> NovelDocument:
        return build_document(self.store.state, self.parser)

    def stats(self) -> NovelStats:
        return novel_stats(self.store.state, self.parser)

    def attach_saver(self, saver: DebouncedSaver):
        """每次状态变更后通过防抖保存器写盘"""
        self.detach_saver()
        self.saver = saver
        self._unsubscribe_saver = self.store.subscribe(saver)

    def detach_saver(self):
        if self._unsubscribe_saver:
            self._unsubscribe_saver()
        if self.saver:
            self.saver.flush()
        self.saver = None

    def open_session(self, session: NovelSession) -> "NovelRuntime":
        """为另一本小说创建运行时，共享提供者、配置与解析器，保存到同一个图书库"""
        sibling = NovelRuntime(
            SessionStore(session), self.provider, self.full_config,
            parser=self.parser, sleep=self.sleep, clock=self.clock,
        )
        if self.saver:
            sibling.attach_saver(DebouncedSaver(self.saver.save_func, self.saver.delay))
        return sibling

    def start_deconstruction(self, source: str, cancel_event=None) -> Tuple["NovelRuntime", ChatResult]:
        """
        小说拆解 / 仿写：新建一本小说，请模型分析目标作品的题材、人设、文风与开篇套路，
        再据此给出新大纲。

        Args:
            source: 目标小说的书名或链接。

        Returns:
            (新小说的运行时, 分析回复)
        """
        source = (source or "").strip()
        if not source:
            raise ValueError("请输入要拆解的小说名称或链接")

        session = new_session(self.full_config, title=deconstruction_title(source), welcome=False)
        sibling = self.open_session(session)
        logger.info(f"开始拆解小说: {source} (新会话: {session.title})")
        result = sibling.chat.send_message(render_prompt("deconstruct_novel", source=source), cancel_event)
        return sibling, result
        self._unsubscribe_saver = None


def build_runtime(session: NovelSession = None, provider=None, full_config: dict = None,
                  library_path: str = None, configure_logging: bool = False, **kwargs) -> NovelRuntime:
    """
    组装一个可用的运行时。

    Args:
        session: 要打开的会话，缺省时新建。
        provider: 生成提供者，缺省使用 LangChain 提供者。
        full_config: 合并后的全局配置，缺省从 config.yaml 读取。
        library_path: 指定时会挂载防抖保存器，把变更写入该图书库文件。
        configure_logging: 应用启动时传 True，按 logging 分区初始化日志。
    """
    full_config = full_config if full_config is not None else load_config()
    if configure_logging:
        setup_logging(section(full_config, "logging"))
    session = session or new_session(full_config)
    if provider is None:
        load_environment()
        provider = LangChainGenerationProvider(default_instruction=render_prompt("system_instruction"))

    runtime = NovelRuntime(SessionStore(session), provider, full_config, **kwargs)

    if library_path is None and section(full_config, "app").get("autosave"):
        app_config = section(full_config, "app")
        library_path = default_library_path(app_config.get("data_dir"), app_config.get("library_file"))
    if library_path:
        delay = section(full_config, "app").get("save_debounce_seconds", 0.5)
        runtime.attach_saver(DebouncedSaver(LibraryWriter(library_path), delay))
        logger.info(f"已启用自动保存: {library_path}")
    return runtime
