"""
批量生成服务 (Batch Orchestrator)
按顺序逐章撰写正文，必要时在两章之间自动触发剧情锚定。
每一步都等上一步的流完全结束后才开始，已完成的章节永远不会回滚。
"""
from __future__ import annotations
import logging
import threading

from core.exceptions import AnchorError, ConfigurationError, LLMOperationError
from core.schemas import BatchReport, ChatResult, make_message, ROLE_MODEL, ROLE_USER
from core.store import AnchorTriggerAdvanced, MessageContentReplaced, MessagesAppended
from core.text_cleaning import append_options, strip_options
from prompts import render_prompt
from services.streaming import stream_into_message

logger = logging.getLogger(__name__)


class BatchOrchestrator:
    def __init__(self, runtime):
        self.runtime = runtime

    def generate_chapters(self, count: int, cancel_event: threading.Event = None) -> BatchReport:
        """
        连续撰写 count 个章节。

        取消信号在每章开始前和每次流结束后检查；取消时正在写的章节保留已生成的部分。
        任意一章失败都会中止循环，并在对话中追加错误提示。

        Returns:
            BatchReport: 完成的章节数与最终状态。
        """
        report = BatchReport(requested=count)
        if count <= 0:
            logger.info("批量生成数量为 0，已跳过。")
            return report

        store = self.runtime.store
        with store.generation_slot():
            start = make_message(ROLE_USER, render_prompt("batch_start", count=count))
            store.dispatch(MessagesAppended(messages=(start,)))
            logger.info(f"开始批量生成 {count} 个章节")

            try:
                for index in range(1, count + 1):
                    if self._cancelled(cancel_event):
                        report.status = "cancelled"
                        break

                    self._maybe_anchor(report, cancel_event)
                    if self._cancelled(cancel_event):
                        report.status = "cancelled"
                        break

                    self._write_chapter(index, count, cancel_event)
                    if self._cancelled(cancel_event):
                        logger.info(f"批量生成在第 {index}/{count} 个任务中被取消，保留已生成内容。")
                        report.status = "cancelled"
                        break

                    report.completed += 1
                    if index < count:
                        self.runtime.sleep(self.runtime.batch_pause)
            except (LLMOperationError, ConfigurationError) as e:
                logger.error(f"批量生成中止 (已完成 {report.completed}/{count}): {e}", exc_info=True)
                self.runtime.append_error_notice(e)
                report.status = "failed"
                report.error = str(e)

        logger.info(f"批量生成结束: 状态={report.status}, 完成 {report.completed}/{count}")
        return report

    def _cancelled(self, cancel_event: threading.Event = None) -> bool:
        return cancel_event is not None and cancel_event.is_set()

    def _maybe_anchor(self, report: BatchReport, cancel_event: threading.Event = None):
        """章节数达到触发点时以静默模式锚定；锚定成功或失败后触发点前移，取消时保持不变"""
        policy = self.runtime.store.state.anchor_config
        if not policy or not policy.enabled:
            return
        current_chapters = self.runtime.chapter_count()
        if current_chapters < policy.next_trigger:
            return

        logger.info(f"自动触发剧情锚点 (第 {current_chapters} 章)...")
        outcome = self.runtime.anchor.compact(silent=True, cancel_event=cancel_event)
        if outcome.cancelled:
            return
        if outcome.succeeded:
            report.anchors_triggered += 1
        else:
            logger.warning(f"自动锚定失败，继续批量生成: {outcome.error}")
            self.runtime.append_error_notice(AnchorError(f"自动锚定失败: {outcome.error}"))
        self.runtime.store.dispatch(AnchorTriggerAdvanced())
        self.runtime.sleep(self.runtime.batch_pause)

    def _write_chapter(self, index: int, total: int, cancel_event: threading.Event = None):
        store = self.runtime.store
        prompt = render_prompt("chapter_batch", target_words=store.state.settings.target_words_per_chapter)
        task = make_message(ROLE_USER, render_prompt("batch_task", index=index, total=total, prompt=prompt))
        store.dispatch(MessagesAppended(messages=(task,)))

        placeholder = make_message(ROLE_MODEL, "")
        store.dispatch(MessagesAppended(messages=(placeholder,)))
        history = self.runtime.history(exclude_ids=(placeholder.id,))

        logger.info(f"正在撰写章节 (自动任务 {index}/{total})")
        full_text = stream_into_message(self.runtime, history, prompt, placeholder.id, cancel_event)
        if self._cancelled(cancel_event):
            return

        final = append_options(strip_options(full_text), self.runtime.follow_up_options)
        store.dispatch(MessageContentReplaced(message_id=placeholder.id, content=final))
        self.runtime.apply_config_directives(final)

    def generate_toc(self, count: int, cancel_event: threading.Event = None) -> ChatResult:
        """一次请求生成接下来 count 个章节的目录"""
        logger.info(f"批量生成 {count} 个章节的目录")
        return self.runtime.chat.send_message(render_prompt("toc_batch", count=count), cancel_event)
