"""Provider 异常体系

外部依赖（电子签名、邮件、认证服务）的错误。
除认证外，这些错误对所属流转都不是致命的：由调用方记录日志并降级为 warning。
"""


class ProviderError(Exception):
    """Provider 包基础异常"""

    def __init__(self, message: str, recoverable: bool = True) -> None:
        """
        Args:
            message: 错误描述
            recoverable: 是否可通过重试恢复
        """
        super().__init__(message)
        self.recoverable = recoverable


class ESignatureError(ProviderError):
    """电子签名 provider 调用失败（网络错误、非 2xx 响应）"""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        recoverable: bool = True,
    ) -> None:
        super().__init__(message, recoverable=recoverable)
        self.status_code = status_code


class EmailDeliveryError(ProviderError):
    """邮件发送失败

    此异常不中断所属流转，仅在响应中追加 warning。
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message, recoverable=True)
        self.status_code = status_code


class AuthServiceError(ProviderError):
    """认证服务拒绝凭证或不可达"""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message, recoverable=status_code is None or status_code >= 500)
        self.status_code = status_code
