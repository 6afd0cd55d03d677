from .jwt_handler import create_access_token, verify_access_token
from .dependencies import ADMIN_ROLE, Principal, get_current_user, require_admin
from .rate_limiter import limiter, user_id_or_ip
from .signatures import constant_time_equals, hmac_sha256_hex, sha512_hex

__all__ = [
    "ADMIN_ROLE",
    "Principal",
    "create_access_token",
    "verify_access_token",
    "get_current_user",
    "require_admin",
    "limiter",
    "user_id_or_ip",
    "constant_time_equals",
    "hmac_sha256_hex",
    "sha512_hex",
]
