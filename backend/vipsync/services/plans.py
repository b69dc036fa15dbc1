"""
VIP 计划规则

计划 ID 形如 "vip-basic" / "vip-plus" / "vip-premium"，
显示名称和用户角色都按固定的子串规则推导。
"""
from decimal import Decimal

from vipsync.core.config import settings
from vipsync.enums import UserRole

_PLAN_WORDS = (
    ("basic", "Básico"),
    ("plus", "Plus"),
    ("premium", "Premium"),
)


def plan_display_name(plan_id: str) -> str:
    """vip-basic → "VIP Básico"，vip-plus → "VIP Plus"，vip-premium → "VIP Premium" """
    name = plan_id.replace("vip-", "VIP ")
    for word, label in _PLAN_WORDS:
        name = name.replace(word, label)
    return name


def role_for_plan(plan_id: str) -> UserRole:
    if "vip-plus" in plan_id or "vip_plus" in plan_id:
        return UserRole.vip_plus
    if "vip" in plan_id:
        return UserRole.vip
    return UserRole.user


def plan_price(plan_id: str) -> Decimal | None:
    """计划价格，未知计划返回 None"""
    return settings.PLAN_PRICES.get(plan_id)
