"""领域异常

路由层与 main.py 中的异常处理器负责把这些异常映射为 HTTP 状态码。
"""


class DomainError(Exception):
    """业务异常基类"""

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message: str = str(message)


class ValidationError(DomainError):
    """请求数据缺失或不合法（4xx，不重试）"""

    def __init__(self, errors: list[str] | str, message: str = "Validation failed"):
        super().__init__(message)
        self.errors: list[str] = [errors] if isinstance(errors, str) else list(errors)


class NotFoundError(DomainError):
    """资源不存在"""


class OwnershipError(DomainError):
    """资源存在但不属于当前用户"""


class NotOwnedOrNotFoundError(NotFoundError, OwnershipError):
    """资源不存在或不属于当前用户，对调用方不可区分"""


class MalformedStorageError(DomainError):
    """存储记录无法解析（未知格式、损坏的 JSON 列）"""


class UpstreamGenerationError(DomainError):
    """外部回复生成失败或超时"""


class PersistenceError(DomainError):
    """存储不可用或写入失败（500）"""
