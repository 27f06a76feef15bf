"""JWT 令牌工具

只负责签发与校验；用户注册/登录不在本服务内。
"""
import logging
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from ..config import get_settings

logger = logging.getLogger(__name__)

ACCESS_TOKEN_EXPIRE_MINUTES = 60 * 24


def create_access_token(data: dict[str, object], expires_delta: timedelta | None = None) -> str:
    """签发访问令牌"""
    settings = get_settings()
    to_encode = dict(data)
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode["exp"] = expire
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def decode_token(token: str) -> dict[str, object] | None:
    """解码令牌，无效或过期时返回 None"""
    settings = get_settings()
    try:
        return jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError as e:
        logger.debug("token decode failed: %s", e)
        return None
