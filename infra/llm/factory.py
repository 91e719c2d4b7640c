"""
管理和提供不同LLM（大语言模型）的实例。
这个模块完全由 provider_templates.yaml 和会话的 GenerationConfig 驱动。
"""
import os
import importlib
from functools import lru_cache
from config.loader import load_provider_templates
from core.exceptions import ConfigurationError
from core.schemas import GenerationConfig
import logging

logger = logging.getLogger(__name__)

@lru_cache(maxsize=1)
def get_provider_templates():
    """缓存提供商模板以避免重复读取文件。"""
    return load_provider_templates()

def _get_class_from_path(class_path: str):
    """根据字符串路径动态导入类。"""
    try:
        module_path, class_name = class_path.rsplit(".", 1)
        module = importlib.import_module(module_path)
        return getattr(module, class_name)
    except (ImportError, AttributeError, ValueError) as e:
        logger.error(f"无法从路径 '{class_path}' 动态导入类: {e}", exc_info=True)
        raise ConfigurationError(f"无法从路径 '{class_path}' 动态导入类: {e}")

def build_constructor_params(config: GenerationConfig, provider_template: dict) -> dict:
    """
    按模板把 GenerationConfig 字段映射为模型构造参数。

    Returns:
        dict: 传给 LangChain 模型类的关键字参数。
    """
    constructor_params = {}
    for param_name, spec in (provider_template.get("params") or {}).items():
        param_type = spec.get("type", "field")
        value = getattr(config, spec.get("source", param_name), None)
        if value is None or value == "":
            continue
        if param_type == "field":
            constructor_params[param_name] = value
        elif param_type == "secret_env":
            env_var_value = os.getenv(value)
            if not env_var_value:
                logger.error(f"模型提供商 '{config.provider}' 需要设置环境变量 '{value}'，但它未被设置。")
                raise ConfigurationError(f"错误: 需要设置环境变量 '{value}'，但它未被设置。")
            constructor_params[param_name] = env_var_value
        else:
            raise ConfigurationError(f"未知的参数类型 '{param_type}' (参数 {param_name})")
    return constructor_params

def get_llm(config: GenerationConfig):
    """
    根据会话的生成配置实例化一个 LangChain 聊天模型。

    Args:
        config (GenerationConfig): 会话的生成配置。

    Returns:
        A LangChain chat model instance.
    """
    templates = get_provider_templates()

    provider_template = templates.get(config.provider)
    if not provider_template:
        logger.error(f"在提供商模板中找不到模板ID '{config.provider}'。")
        raise ConfigurationError(f"错误: 在 provider_templates.yaml 中找不到模板ID '{config.provider}'。")

    class_path = provider_template.get("class")
    if not class_path:
        logger.error(f"提供商模板 '{config.provider}' 中缺少 'class' 路径。")
        raise ConfigurationError(f"错误: 提供商模板 '{config.provider}' 中缺少 'class' 路径。")

    LLMClass = _get_class_from_path(class_path)
    constructor_params = build_constructor_params(config, provider_template)

    logger.info(f"正在实例化模型: {config.model} (类: {LLMClass.__name__})")

    try:
        return LLMClass(**constructor_params)
    except Exception as e:
        safe_params = {k: v for k, v in constructor_params.items() if "key" not in k}
        logger.error(f"实例化模型 '{config.model}' 失败: {e}\n使用的参数: {safe_params}", exc_info=True)
        raise ConfigurationError(f"实例化模型 '{config.model}' 失败: {e}")
