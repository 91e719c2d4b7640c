"""
配置加载器
读取包内的 config.yaml 与工作目录下的 user_config.yaml 并合并，
同时提供模型提供商模板的读取。
"""
import yaml
import os
import logging
from core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

PACKAGE_DIR = os.path.dirname(os.path.abspath(__file__))

def get_resource_path(relative_path: str) -> str:
    """
    获取包内资源的正确路径
    """
    return os.path.join(PACKAGE_DIR, relative_path)

CONFIG_PATH = get_resource_path("config.yaml")
PROVIDER_TEMPLATES_PATH = get_resource_path("provider_templates.yaml")
USER_CONFIG_PATH = os.getenv("INKFLOW_USER_CONFIG", os.path.abspath("user_config.yaml"))

# 用户配置中可以覆盖的分区
MERGEABLE_SECTIONS = ("app", "generation", "context", "streaming", "batch", "anchor", "parser")

def _merge_configs(base_config: dict, user_config: dict) -> dict:
    """
    合并基础配置和用户配置。
    用户配置中的各个分区会按键覆盖或扩展基础配置。
    """
    merged_config = {k: (dict(v) if isinstance(v, dict) else v) for k, v in base_config.items()}

    for section in MERGEABLE_SECTIONS:
        if section in user_config and isinstance(user_config[section], dict):
            merged_config[section] = merged_config.get(section, {})
            merged_config[section].update(user_config[section])

    return merged_config

def _read_yaml(path: str) -> dict:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
        return data if data else {}
    except yaml.YAMLError as e:
        logger.error(f"解析 {path} 文件失败: {e}", exc_info=True)
        raise ConfigurationError(f"错误: 解析 {path} 文件失败: {e}")

def load_user_config(path: str = None) -> dict:
    """
    加载并解析 user_config.yaml 文件，不存在时返回空字典。
    """
    path = path or USER_CONFIG_PATH
    if not os.path.exists(path):
        return {}
    return _read_yaml(path)

def load_config(user_config_path: str = None) -> dict:
    """
    加载并解析 config.yaml 和 user_config.yaml 文件，并进行合并。
    """
    if not os.path.exists(CONFIG_PATH):
        logger.warning(f"配置文件 {CONFIG_PATH} 未找到，返回默认空配置。")
        return {}
    base_config = _read_yaml(CONFIG_PATH)
    user_config = load_user_config(user_config_path)
    return _merge_configs(base_config, user_config)

def load_provider_templates() -> dict:
    """
    加载并解析 provider_templates.yaml 文件。
    """
    if not os.path.exists(PROVIDER_TEMPLATES_PATH):
        logger.warning(f"提供商模板文件 {PROVIDER_TEMPLATES_PATH} 未找到，返回空模板。")
        return {}
    return _read_yaml(PROVIDER_TEMPLATES_PATH)

def save_user_config(user_config_data: dict, path: str = None):
    """
    将用户配置字典写回到 user_config.yaml 文件。

    Args:
        user_config_data (dict): 要保存的用户配置数据。
        path (str): 目标文件，默认为 USER_CONFIG_PATH。
    """
    path = path or USER_CONFIG_PATH
    try:
        os.makedirs(os.path.dirname(path) or '.', exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            yaml.dump(user_config_data, f, allow_unicode=True, sort_keys=False)
        logger.info(f"用户配置已成功保存到 {path}。")
    except OSError as e:
        logger.error(f"写入 {path} 文件失败: {e}", exc_info=True)
        raise ConfigurationError(f"错误: 写入 {path} 文件失败: {e}")

def section(full_config: dict, name: str) -> dict:
    """安全地读取某个配置分区"""
    value = (full_config or {}).get(name)
    return value if isinstance(value, dict) else {}
