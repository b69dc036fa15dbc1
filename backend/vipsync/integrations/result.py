"""
权限下发结果类型

Discord 与 Rust 服务器适配器从不向调用方抛出异常，
统一返回 ProvisionResult：成功时为真值，失败时携带原因，
便于对账任务记录失败的具体原因。
"""
from __future__ import annotations

import enum
from dataclasses import dataclass


class ProvisionFailure(str, enum.Enum):
    NOT_CONFIGURED = "not_configured"  # 缺少凭证或地址
    INVALID_ID = "invalid_id"  # 用户 ID 格式不合法，未发起网络请求
    REJECTED = "rejected"  # 对方返回了非成功响应
    TRANSPORT_ERROR = "transport_error"  # 网络错误、超时


@dataclass(frozen=True)
class ProvisionResult:
    ok: bool
    reason: ProvisionFailure | None = None
    detail: str | None = None

    def __bool__(self) -> bool:
        return self.ok

    @classmethod
    def success(cls, detail: str | None = None) -> ProvisionResult:
        return cls(ok=True, detail=detail)

    @classmethod
    def failure(cls, reason: ProvisionFailure, detail: str | None = None) -> ProvisionResult:
        return cls(ok=False, reason=reason, detail=detail)

    def describe(self) -> str:
        if self.ok:
            return "ok"
        text = self.reason.value if self.reason else "failed"
        return f"{text}: {self.detail}" if self.detail else text
