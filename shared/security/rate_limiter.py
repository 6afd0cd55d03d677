from slowapi import Limiter
from slowapi.util import get_remote_address
from fastapi import Request
from .jwt_handler import verify_access_token


def user_id_or_ip(request: Request) -> str:
    """
    Key function for SlowAPI.
    Extracts the customer email from the Authorization header if available.
    Falls back to the client's IP address if unauthenticated.
    """
    auth_header = request.headers.get("Authorization")

    if auth_header and auth_header.startswith("Bearer "):
        token = auth_header.split(" ", 1)[1]
        settings = request.app.state.settings
        payload = verify_access_token(token, settings.jwt_secret_key, settings.jwt_algorithm)
        if payload and "sub" in payload:
            return f"user:{payload['sub']}"

    return f"ip:{get_remote_address(request)}"


# Initialize the Limiter with our custom key function.
# create_app() flips ``limiter.enabled`` from Settings.rate_limit_enabled.
limiter = Limiter(key_func=user_id_or_ip)
