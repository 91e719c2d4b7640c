"""
自定义异常类
用于在应用的不同层之间传递具有明确语义的错误信息。
取消生成不属于错误，不在此定义。
"""

class LLMOperationError(Exception):
    """当与大语言模型交互时发生错误（网络、非 2xx 响应、流格式损坏等）"""
    pass

class AnchorError(LLMOperationError):
    """手动剧情锚定失败，会话保持原状"""
    pass

class ConfigurationError(Exception):
    """当应用配置不正确或缺失时发生错误"""
    pass

class GenerationBusyError(Exception):
    """已有一个生成任务占用了会话的生成槽位"""
    pass

class BatchPreconditionError(Exception):
    """批量撰写正文的前置条件不满足（例如尚无章节目录）"""
    pass

class StorageError(Exception):
    """当读写本地图书库文件时发生错误"""
    pass
