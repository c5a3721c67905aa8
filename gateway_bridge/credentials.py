from typing import Optional

import jwt

from .errors import InvalidCredentials
from .schemas import CustomData


def issuer_from_token(authorization: str) -> str:
    """Read the gateway URL from the ``iss`` claim of a "Bearer <JWT>" header.

    The JWT signature is not checked; the gateway verifies the token itself.
    """
    token = authorization.split(" ", 1)[-1].strip()
    try:
        claims = jwt.decode(token, options={"verify_signature": False})
    except jwt.InvalidTokenError as e:
        raise InvalidCredentials("Malformed bearer token", str(e))
    iss = claims.get("iss")
    if not iss or not isinstance(iss, str):
        raise InvalidCredentials("Bearer token has no issuer")
    return iss


def credentials_from_header(authorization: Optional[str], override_url: Optional[str] = None) -> CustomData:
    if not authorization:
        raise InvalidCredentials("Missing authorization header")
    url_base = override_url or issuer_from_token(authorization)
    return CustomData(authorization=authorization, urlBase=url_base.rstrip("/"))
