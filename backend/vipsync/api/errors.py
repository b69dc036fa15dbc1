"""
自定义异常模块

定义应用特定的异常类，用于统一的错误处理。
所有业务异常都继承自 AppError，在 main.py 中有统一的异常处理器。

错误码约定：前三位为 HTTP 状态码，后三位为业务序号。
"""
from __future__ import annotations


class AppError(Exception):
    """
    应用自定义异常类

    - code: 业务错误码（用于前端区分不同错误）
    - message: 错误消息
    - status_code: HTTP 状态码（400, 404, 500 等）

    使用示例：
        raise AppError(code=404001, message="User not found", status_code=404)
    """

    def __init__(self, *, code: int, message: str, status_code: int = 400) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code


class PaymentProviderError(AppError):
    """
    支付服务调用失败

    包括：访问令牌未配置、重试耗尽后的瞬时错误、非瞬时的 4xx 响应。
    出现该错误时支付状态未知，不能继续授予权限。
    """

    def __init__(self, message: str, *, code: int = 502001, status_code: int = 502) -> None:
        super().__init__(code=code, message=message, status_code=status_code)


def unauthorized(message: str = "Unauthorized") -> AppError:
    return AppError(code=401001, message=message, status_code=401)


def forbidden(message: str = "Admin role required") -> AppError:
    return AppError(code=403001, message=message, status_code=403)


def user_not_found() -> AppError:
    return AppError(code=404001, message="User not found", status_code=404)


def provider_not_configured() -> PaymentProviderError:
    return PaymentProviderError(
        "MERCADOPAGO_ACCESS_TOKEN not configured", code=503001, status_code=503
    )
