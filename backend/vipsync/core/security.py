"""
安全模块

访问令牌由身份服务签发（与本服务共享 SECRET_KEY，HS256），
这里只负责签发（测试、运维脚本）和解码。
"""
from datetime import datetime, timedelta, timezone
from typing import Any

import jwt

from vipsync.core.config import settings

ALGORITHM = "HS256"


def create_access_token(subject: str | Any, expires_delta: timedelta) -> str:
    expire = datetime.now(timezone.utc) + expires_delta
    to_encode = {"exp": expire, "sub": str(subject)}
    encoded_jwt = jwt.encode(to_encode, settings.SECRET_KEY, algorithm=ALGORITHM)
    return encoded_jwt


def decode_access_token(token: str) -> dict[str, Any]:
    """解码并校验签名与过期时间，失败时抛出 jwt.InvalidTokenError"""
    return jwt.decode(token, settings.SECRET_KEY, algorithms=[ALGORITHM])
