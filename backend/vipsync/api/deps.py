"""
FastAPI 依赖注入模块

提供可复用的依赖项，用于路由处理函数中：
- 数据库会话
- 当前登录用户 / 管理员用户（Bearer JWT）
- 管理接口共享密钥（X-Admin-Key）
- 定时任务接口认证（Bearer ADMIN_CRON_SECRET 或 X-API-Key / ?apiKey=）
- 长生命周期服务实例（支付处理器、Redis 客户端）
"""
import hmac
from collections.abc import Generator
from typing import Annotated

import jwt
from fastapi import Depends, Header, HTTPException, Query, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt.exceptions import InvalidTokenError
from pydantic import ValidationError
from sqlmodel import Session

from vipsync.api.errors import forbidden, unauthorized
from vipsync.api.schemas import TokenPayload
from vipsync.core import security
from vipsync.core.config import settings
from vipsync.core.db import engine
from vipsync.core.redis_client import RedisClient, get_redis_client
from vipsync.enums import UserRole
from vipsync.models import User
from vipsync.services.payment_processor import PaymentProcessor, get_payment_processor

# 从请求头的 Authorization: Bearer <token> 中提取 token
reusable_oauth2 = HTTPBearer()
# 定时任务接口允许不带 Authorization（改用 API Key）
optional_bearer = HTTPBearer(auto_error=False)


def get_db() -> Generator[Session, None, None]:
    """
    获取数据库会话（依赖注入）

    使用 yield 确保会话在请求结束后自动关闭。
    """
    with Session(engine) as session:
        yield session


SessionDep = Annotated[Session, Depends(get_db)]
TokenDep = Annotated[HTTPAuthorizationCredentials, Depends(reusable_oauth2)]
ProcessorDep = Annotated[PaymentProcessor, Depends(get_payment_processor)]
RedisDep = Annotated[RedisClient, Depends(get_redis_client)]


def get_current_user(session: SessionDep, token: TokenDep) -> User:
    """
    获取当前登录用户

    token 由身份服务签发，sub 为用户 ID。
    token 无效或用户不存在时返回 401。
    """
    try:
        payload = jwt.decode(
            token.credentials, settings.SECRET_KEY, algorithms=[security.ALGORITHM]
        )
        token_data = TokenPayload(**payload)
    except (InvalidTokenError, ValidationError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        )
    if not token_data.sub:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        )
    user = session.get(User, token_data.sub)
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")
    return user


CurrentUser = Annotated[User, Depends(get_current_user)]


def _secret_matches(value: str | None, secret: str | None) -> bool:
    if not value or not secret:
        return False
    return hmac.compare_digest(value.encode(), secret.encode())


def get_admin_user(
    current_user: CurrentUser,
    x_admin_key: Annotated[str | None, Header()] = None,
) -> User:
    """
    管理员用户

    要求当前用户角色为 admin；配置了 ADMIN_API_KEY 时还要求 X-Admin-Key 匹配。
    """
    if current_user.role != UserRole.admin:
        raise forbidden()
    if settings.ADMIN_API_KEY and not _secret_matches(x_admin_key, settings.ADMIN_API_KEY):
        raise unauthorized("Invalid admin key")
    return current_user


AdminUser = Annotated[User, Depends(get_admin_user)]


def verify_cron_access(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(optional_bearer)],
    x_api_key: Annotated[str | None, Header()] = None,
    api_key: Annotated[str | None, Query(alias="apiKey")] = None,
) -> None:
    """
    定时任务接口认证

    满足其一即可：
    - Authorization: Bearer <ADMIN_CRON_SECRET>
    - X-API-Key 请求头或 apiKey 查询参数等于 INTERNAL_API_KEY
    两个密钥都未配置时拒绝所有请求。
    """
    if credentials is not None and _secret_matches(
        credentials.credentials, settings.ADMIN_CRON_SECRET
    ):
        return
    if _secret_matches(x_api_key or api_key, settings.INTERNAL_API_KEY):
        return
    raise unauthorized()


CronAccess = Depends(verify_cron_access)
