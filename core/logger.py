"""
日志配置
根 logger 同时输出到滚动日志文件和控制台，参数来自 config.yaml 的 logging 分区。
"""
import logging
import logging.handlers
import os
import sys

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(name)s - %(message)s'

DEFAULT_LOGGING_CONFIG = {
    "level": "INFO",
    "log_dir": "logs",
    "file_name": "app.log",
    "max_bytes": 10 * 1024 * 1024,  # 10 MB
    "backup_count": 5,
}


def setup_logging(logging_config: dict = None) -> str:
    """
    配置根 logger。重复调用时会先移除已有的 handler，不会重复输出。

    Args:
        logging_config (dict): config.yaml 中的 logging 分区，缺省字段使用默认值。

    Returns:
        str: 日志文件的完整路径。
    """
    settings = {**DEFAULT_LOGGING_CONFIG, **(logging_config or {})}
    log_dir = settings["log_dir"]
    os.makedirs(log_dir, exist_ok=True)
    log_path = os.path.join(log_dir, settings["file_name"])

    for handler in logging.root.handlers[:]:
        logging.root.removeHandler(handler)

    level = os.getenv("LOG_LEVEL") or settings["level"]
    logging.root.setLevel(str(level).upper())

    formatter = logging.Formatter(LOG_FORMAT)
    file_handler = logging.handlers.RotatingFileHandler(
        log_path,
        maxBytes=int(settings["max_bytes"]),
        backupCount=int(settings["backup_count"]),
        encoding='utf-8'
    )
    console_handler = logging.StreamHandler(sys.stdout)
    for handler in (file_handler, console_handler):
        handler.setFormatter(formatter)
        logging.root.addHandler(handler)

    # 捕获 warnings 模块的警告
    logging.captureWarnings(True)
    logging.getLogger(__name__).debug(f"日志已初始化: {log_path}")
    return log_path
