"""异常定义"""


class StorybookError(Exception):
    """所有绘本工作室异常的基类"""


class ConfigurationError(StorybookError):
    """缺少 API 密钥等配置，不重试"""


class GenerationError(StorybookError):
    """生成调用失败"""


class ApiStatusError(GenerationError):
    """接口返回非 2xx 状态码"""

    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code


class TransientServerError(ApiStatusError):
    """5xx 服务端错误，可重试"""


class ResponseShapeError(GenerationError):
    """响应成功但没有可提取的内容，不重试"""


class MissingReferenceError(GenerationError):
    """生成插图前还没有任何角色参考图"""


class MediaError(StorybookError):
    """参考图片或音频无法解析"""


class PersistenceError(StorybookError):
    """保存失败，需要用户手动处理"""


class StorageQuotaError(PersistenceError):
    """存储空间超出配额"""
