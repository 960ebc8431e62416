from fastapi import Depends, Request

from arena.business.services.auth_util import decode_token
from arena.data.schemas import TokenUser
from arena.errors import AuthenticationException


class TokenFromHeader:
    """Reads and decodes ``Authorization: Bearer <jwt>``."""

    def __init__(self, scheme: str = "Bearer"):
        self.scheme = scheme

    async def __call__(self, request: Request) -> dict:
        header = request.headers.get("Authorization")
        if not header:
            raise AuthenticationException(detail="Authorization header not found")

        scheme, _, token = header.partition(" ")
        if scheme.lower() != self.scheme.lower() or not token.strip():
            raise AuthenticationException(detail=f"Expected a {self.scheme} token")

        token_data = decode_token(token.strip())
        if not token_data:
            raise AuthenticationException(detail="Invalid or expired token")

        return token_data


def get_current_user(token_data: dict = Depends(TokenFromHeader())) -> TokenUser:
    try:
        return TokenUser(**token_data["user"])
    except Exception:
        raise AuthenticationException(detail="Could not validate user")
