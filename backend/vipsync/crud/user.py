"""用户 CRUD 操作"""
from sqlmodel import Session, select

from vipsync.enums import UserRole
from vipsync.models import User, utc_now


def get_by_id(*, session: Session, user_id: str) -> User | None:
    return session.get(User, user_id)


def get_by_discord_id(*, session: Session, discord_id: str) -> User | None:
    """根据 Discord ID 查询用户"""
    statement = select(User).where(User.discord_id == discord_id)
    return session.exec(statement).first()


def get_by_reference(*, session: Session, reference: str) -> User | None:
    """
    根据支付外部引用中的用户标识查询用户

    先按主键查找，找不到再按 Discord ID 查找（旧版结账流程使用 Discord ID）。
    """
    return get_by_id(session=session, user_id=reference) or get_by_discord_id(
        session=session, discord_id=reference
    )


def create(
    *,
    session: Session,
    user_id: str | None = None,
    discord_id: str | None = None,
    steam_id: str | None = None,
    role: UserRole = UserRole.user,
) -> User:
    """创建用户（身份服务同步或测试数据）"""
    user = User(discord_id=discord_id, steam_id=steam_id, role=UserRole(role).value)
    if user_id:
        user.id = user_id
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


def update_role(*, session: Session, user: User, role: UserRole) -> bool:
    """
    更新用户角色

    管理员不会被降级，返回是否发生了更新。
    """
    if user.role == UserRole.admin:
        return False
    user.role = UserRole(role).value  # type: ignore[assignment]
    user.updated_at = utc_now()
    session.add(user)
    session.commit()
    return True
