"""
图书库持久化工具 (State Store)
负责把全部小说会话整体保存为 JSON 文件，或从中读取并迁移为当前版本的结构。
本模块与界面框架解耦，可用于任何 Python 环境。
"""
import os
import json
import logging
import tempfile
import threading
from typing import Callable, List, Sequence

from core.exceptions import StorageError
from core.migration import session_from_dict
from core.schemas import NovelSession

logger = logging.getLogger(__name__)

# 图书库默认存储位置
DEFAULT_DATA_DIR = "data"
DEFAULT_LIBRARY_FILE = "library.json"


def default_library_path(data_dir: str = None, file_name: str = None) -> str:
    return os.path.join(data_dir or DEFAULT_DATA_DIR, file_name or DEFAULT_LIBRARY_FILE)


def save_library(sessions: Sequence[NovelSession], path: str):
    """
    将全部会话原子地写入 JSON 文件（先写临时文件再替换）。

    Args:
        sessions: 要保存的会话列表，顺序保持不变。
        path (str): 目标文件路径。
    """
    directory = os.path.dirname(path) or "."
    os.makedirs(directory, exist_ok=True)
    data = [s.to_dict() for s in sessions]

    fd, temp_path = tempfile.mkstemp(dir=directory, prefix=".library-", suffix=".json")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False, indent=2)
        os.replace(temp_path, path)
        logger.info(f"图书库已保存至: {path} ({len(data)} 本)")
    except OSError as e:
        logger.error(f"保存图书库失败: {e}", exc_info=True)
        if os.path.exists(temp_path):
            os.remove(temp_path)
        raise StorageError(f"保存图书库失败: {e}") from e


def load_library(path: str) -> List[NovelSession]:
    """
    从本地文件加载图书库。

    Returns:
        List[NovelSession]: 迁移后的会话列表；文件不存在时返回空列表。
    """
    if not os.path.exists(path):
        logger.info(f"未找到图书库文件 '{path}'。")
        return []

    try:
        with open(path, 'r', encoding='utf-8') as f:
            raw = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.error(f"加载图书库失败: {e}", exc_info=True)
        raise StorageError(f"加载图书库失败: {e}") from e

    if not isinstance(raw, list):
        raise StorageError(f"图书库格式错误: 期望列表，实际为 {type(raw).__name__}")
    return [session_from_dict(item) for item in raw]


def upsert_session(sessions: Sequence[NovelSession], session: NovelSession) -> List[NovelSession]:
    """用新的快照替换同 id 的会话，不存在时插入到最前面"""
    result = list(sessions)
    for i, existing in enumerate(result):
        if existing.id == session.id:
            result[i] = session
            return result
    return [session] + result


class DebouncedSaver:
    """
    防抖保存器：短时间内的多次保存请求只在最后一次之后执行一次。
    这是整个系统中唯一会在后台等待的计时器。
    """

    def __init__(self, save_func: Callable[[NovelSession], None], delay: float = 0.5):
        self.save_func = save_func
        self.delay = delay
        self._timer = None
        self._pending = None
        self._lock = threading.Lock()

    def __call__(self, session: NovelSession):
        self.schedule(session)

    def schedule(self, session: NovelSession):
        with self._lock:
            self._pending = session
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self.delay, self.flush)
            self._timer.daemon = True
            self._timer.start()

    def flush(self):
        with self._lock:
            session, self._pending = self._pending, None
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
        if session is not None:
            self.save_func(session)

    def cancel(self):
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = None
            self._pending = None


class LibraryWriter:
    """把单个会话的快照合并进图书库文件"""

    def __init__(self, path: str):
        self.path = path

    def __call__(self, session: NovelSession):
        sessions = load_library(self.path)
        save_library(upsert_session(sessions, session), self.path)
