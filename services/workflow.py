"""
工作流协调中心 (Workflow Manager)
系统的 Facade 层，负责将界面请求分发至具体的 Service 处理。
与任何 UI 框架解耦，调用方只需要持有一个 NovelRuntime。
"""
from __future__ import annotations
import logging
import threading

from core.document import has_table_of_contents
from core.exceptions import (
    AnchorError, BatchPreconditionError, ConfigurationError, GenerationBusyError, LLMOperationError, StorageError,
)
from prompts import force_reload_prompts

logger = logging.getLogger(__name__)

# 这些异常本身就有明确语义，直接交给调用方
_SEMANTIC_ERRORS = (
    AnchorError, BatchPreconditionError, ConfigurationError, GenerationBusyError, LLMOperationError, StorageError,
)


def run_step(step_name: str, runtime, payload: dict = None, cancel_event: threading.Event = None):
    """
    业务逻辑统一入口点。

    Args:
        step_name: 步骤名称
        runtime: NovelRuntime 对象
        payload: 步骤参数
        cancel_event: 取消信号，由界面上的“停止”按钮设置
    """
    payload = payload or {}
    logger.info(f"路由请求: {step_name} (小说: {runtime.session.title})")

    try:
        # 1. 对话相关业务
        if step_name == "send":
            res = runtime.chat.handle_user_input(payload.get("text", ""), cancel_event)
        elif step_name == "summarize":
            res = runtime.chat.summarize(cancel_event)

        # 2. 锚定相关业务
        elif step_name == "anchor":
            res = runtime.anchor.compact(silent=False, cancel_event=cancel_event)
        elif step_name == "configure_anchor":
            res = runtime.anchor.configure(
                enabled=payload.get("enabled", True),
                interval=payload.get("interval", 20),
                mode=payload.get("mode", "chapter"),
            )

        # 3. 批量生成
        elif step_name == "batch_toc":
            res = runtime.batch.generate_toc(int(payload.get("count", 10)), cancel_event)
        elif step_name == "batch_chapters":
            if not has_table_of_contents(runtime.session.messages):
                raise BatchPreconditionError("检测不到章节目录，请先生成目录再批量撰写正文。")
            res = runtime.batch.generate_chapters(int(payload.get("count", 1)), cancel_event)

        # 4. 章节操作
        elif step_name == "chapter_action":
            res = runtime.chapters.run_action(
                payload["action"], payload["chapter_title"], payload["content"], payload["message_id"], cancel_event
            )
        elif step_name == "optimize_selection":
            res = runtime.chapters.optimize_selection(
                payload["selection"], payload.get("context", ""), payload["message_id"], cancel_event
            )
        elif step_name == "confirm_optimization":
            res = runtime.chapters.confirm_optimization(payload["draft"], payload.get("final_content"))

        # 5. 小说拆解（返回新小说的运行时与分析回复）
        elif step_name == "deconstruct":
            res = runtime.start_deconstruction(payload.get("source", ""), cancel_event)

        # 6. 设置页修改 prompts.yaml 后手动重载
        elif step_name == "reload_prompts":
            force_reload_prompts()
            res = None

        else:
            raise ValueError(f"未知的步骤名称: {step_name}")

        return res

    except _SEMANTIC_ERRORS:
        raise
    except Exception as e:
        logger.error(f"执行 {step_name} 失败: {e}", exc_info=True)
        raise LLMOperationError(f"业务执行失败: {e}") from e
