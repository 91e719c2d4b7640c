"""
剧情锚定服务 (Anchor Compactor)
把截至目前的剧情压缩为一份“剧情锚点”摘要。摘要写入 context_summary 后，
之后发送给模型的只有最近几条消息加上摘要，而界面仍然解析完整的消息列表。
"""
from __future__ import annotations
import logging
import math
import threading
from dataclasses import replace

from core.exceptions import AnchorError, ConfigurationError, LLMOperationError
from core.schemas import ANCHOR_INTERVALS, ANCHOR_MODES, AnchorOutcome, AnchorPolicy, make_message, ROLE_MODEL, ROLE_USER
from core.store import AnchorPolicyChanged, CompactionCommitted, MessagesAppended, MessagesReplaced
from core.text_cleaning import strip_options
from prompts import render_prompt
from services.streaming import stream_into_message

logger = logging.getLogger(__name__)

DIGEST_PREVIEW_LENGTH = 100


def next_trigger_for(chapter_count: int, interval: int, current: int = 0) -> int:
    """下一个触发点：当前章节数之后的第一个 interval 整数倍，且不小于已有的触发点"""
    return max(current, math.ceil((chapter_count + 1) / interval) * interval)


class AnchorCompactor:
    def __init__(self, runtime):
        self.runtime = runtime

    def compact(self, silent: bool = False, cancel_event: threading.Event = None) -> AnchorOutcome:
        """
        执行剧情锚定。

        Args:
            silent (bool): 自动模式。由批量生成在已持有生成槽位时调用，不再检查槽位，
                失败也只返回结果而不抛出。
            cancel_event: 取消信号。

        Raises:
            GenerationBusyError: 手动模式下已有生成任务在进行。
            AnchorError: 手动模式下锚定失败。原有消息与摘要保持不变，只在末尾追加一条错误提示。
        """
        if silent:
            return self._run(cancel_event)

        with self.runtime.store.generation_slot():
            logger.info("正在启动剧情锚定程序...")
            outcome = self._run(cancel_event)
        if not outcome.succeeded and not outcome.cancelled:
            error = AnchorError(f"锚点构建失败: {outcome.error}")
            self.runtime.append_error_notice(error)
            raise error
        return outcome

    def _run(self, cancel_event: threading.Event = None) -> AnchorOutcome:
        store = self.runtime.store
        original = store.state.messages

        request = make_message(ROLE_USER, render_prompt("anchor_request"), prefix="anchor-req-")
        response = make_message(ROLE_MODEL, "", prefix="anchor-res-")
        store.dispatch(MessagesAppended(messages=(request, response)))
        history = self.runtime.history(exclude_ids=(response.id,))

        try:
            raw_digest = stream_into_message(self.runtime, history, request.content, response.id, cancel_event)
        except (LLMOperationError, ConfigurationError) as e:
            logger.error(f"锚点构建失败，已恢复原有消息: {e}", exc_info=True)
            store.dispatch(MessagesReplaced(messages=original))
            return AnchorOutcome(succeeded=False, error=str(e))

        if cancel_event is not None and cancel_event.is_set():
            logger.info("锚点构建已取消，已恢复原有消息。")
            store.dispatch(MessagesReplaced(messages=original))
            return AnchorOutcome(succeeded=False, cancelled=True)

        digest = strip_options(raw_digest)
        if not digest:
            logger.error("模型返回了空的锚点摘要，已恢复原有消息。")
            store.dispatch(MessagesReplaced(messages=original))
            return AnchorOutcome(succeeded=False, error="模型返回了空的锚点摘要")

        notice = make_message(
            ROLE_MODEL,
            render_prompt("anchor_notice", digest_preview=digest[:DIGEST_PREVIEW_LENGTH]),
            prefix="sys-notice-",
            is_system_notice=True,
        )
        store.dispatch(CompactionCommitted(
            messages=original + (request, replace(response, content=digest), notice),
            context_summary=digest,
        ))
        logger.info(f"剧情锚点构建成功，摘要长度 {len(digest)} 字。")
        return AnchorOutcome(succeeded=True, digest=digest)

    def configure(self, enabled: bool, interval: int = 20, mode: str = "chapter") -> AnchorPolicy:
        """设置自动锚定策略，触发点根据当前章节数计算且不会后退"""
        if interval not in ANCHOR_INTERVALS:
            raise ConfigurationError(f"锚定间隔只能是 {ANCHOR_INTERVALS}，收到: {interval}")
        if mode not in ANCHOR_MODES:
            raise ConfigurationError(f"未知的锚定模式: {mode}")

        store = self.runtime.store
        current = store.state.anchor_config
        chapters = self.runtime.chapter_count()
        policy = AnchorPolicy(
            enabled=enabled,
            mode=mode,
            chapter_interval=interval,
            next_trigger=next_trigger_for(chapters, interval, current.next_trigger if current else 0),
        )
        store.dispatch(AnchorPolicyChanged(policy=policy))
        logger.info(f"自动锚定策略已更新: 启用={enabled}, 间隔={interval}, 下次触发=第 {policy.next_trigger} 章")
        return store.state.anchor_config
