"""
枚举类型定义模块

所有枚举都继承自 str 和 Enum，这样既可以用作字符串，又具有枚举的特性。
"""
from enum import Enum


class UserRole(str, Enum):
    """
    用户角色枚举

    - user: 普通用户
    - vip: VIP 基础版 / 高级版
    - vip_plus: VIP Plus
    - admin: 管理员（支付流程不会降级管理员）
    """
    user = "user"
    vip = "vip"
    vip_plus = "vip-plus"
    admin = "admin"


class SubscriptionStatus(str, Enum):
    """
    订阅状态枚举

    - pending: 已创建支付偏好，等待支付结果
    - active: 激活中
    - expired: 已过期（到期任务设置）
    - cancelled: 支付被取消/拒绝，或被新的订阅替代
    """
    pending = "pending"
    active = "active"
    expired = "expired"
    cancelled = "cancelled"


class PaymentStatus(str, Enum):
    """支付服务返回的支付状态（只列出业务上关心的值）"""
    pending = "pending"
    approved = "approved"
    in_process = "in_process"
    rejected = "rejected"
    cancelled = "cancelled"
    refunded = "refunded"


class NotificationTopic(str, Enum):
    """支付通知主题"""
    payment = "payment"
    merchant_order = "merchant_order"
