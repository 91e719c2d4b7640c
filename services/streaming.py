"""
流式输出节流
模型的增量文本先在内存中累积，最多每个提交间隔向会话仓库提交一次，
避免每个增量都触发整条解析流水线的重算。
"""
from __future__ import annotations
import logging
import time
from typing import Callable, Optional

from core.store import MessageContentReplaced

logger = logging.getLogger(__name__)

DEFAULT_COMMIT_INTERVAL = 0.15


class StreamAccumulator:
    """
    把增量文本写入占位消息。

    Args:
        store: SessionStore 实例。
        message_id (str): 占位消息的 ID。
        interval (float): 两次提交之间的最小间隔（秒）。
        clock: 单调时钟，测试时可注入。
    """

    def __init__(self, store, message_id: str, interval: float = DEFAULT_COMMIT_INTERVAL,
                 clock: Callable[[], float] = time.monotonic):
        self.store = store
        self.message_id = message_id
        self.interval = interval
        self.clock = clock
        self.text = ""
        self.commits = 0
        self._committed_text: Optional[str] = None
        self._last_commit = None

    def on_chunk(self, chunk: str):
        self.text += chunk
        now = self.clock()
        if self._last_commit is None or now - self._last_commit >= self.interval:
            self._commit(now)

    def flush(self) -> str:
        """提交最终文本，已经提交过的相同内容不会重复派发"""
        if self.text != self._committed_text:
            self._commit(self.clock())
        return self.text

    def _commit(self, now: float):
        self.store.dispatch(MessageContentReplaced(message_id=self.message_id, content=self.text))
        self._committed_text = self.text
        self._last_commit = now
        self.commits += 1


def stream_into_message(runtime, history, prompt: str, message_id: str, cancel_event=None) -> str:
    """
    调用生成提供者并把输出流式写入指定消息。
    无论成功、失败还是取消，已生成的部分都会被提交。

    Returns:
        str: 提供者返回的完整文本（取消时为部分文本）。
    """
    state = runtime.store.state
    accumulator = StreamAccumulator(
        runtime.store, message_id, interval=runtime.commit_interval, clock=runtime.clock
    )
    try:
        text = runtime.provider.generate(
            history,
            prompt,
            state.settings,
            state.context_summary,
            accumulator.on_chunk,
            cancel_event,
            extra_instruction=runtime.extra_instruction(),
        )
    finally:
        accumulator.flush()
    logger.debug(f"消息 {message_id} 流式写入完成，共提交 {accumulator.commits} 次")
    return text if text is not None else accumulator.text
