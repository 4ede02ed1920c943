from auction_service.core.config import settings
from auction_service.core.database import Base, get_engine, get_session_maker
from auction_service.core.redis import close_redis, get_redis
from auction_service.core.security import create_access_token, decode_access_token

__all__ = [
    "settings",
    "Base",
    "get_engine",
    "get_session_maker",
    "get_redis",
    "close_redis",
    "create_access_token",
    "decode_access_token",
]
