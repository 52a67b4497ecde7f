"""FastAPI dependencies for caller identification.

Admin endpoints require a valid X-API-Key. Customer endpoints trust the
X-User-Id header set by the upstream gateway after it authenticated the user.
"""

from typing import Annotated

from fastapi import Header, HTTPException

from restaurant_ordering.auth.api_key_validator import APIKeyValidator


def get_api_key_from_header(
    x_api_key: Annotated[str | None, Header()] = None,
    validator: APIKeyValidator | None = None,
) -> str:
    """Extract and validate the API key from the X-API-Key header.

    Args:
        x_api_key: API key from X-API-Key header (injected by FastAPI)
        validator: APIKeyValidator holding the accepted keys

    Returns:
        str: The validated API key

    Raises:
        HTTPException: 401 if API key is missing or invalid
    """
    if not x_api_key:
        raise HTTPException(status_code=401, detail="Missing API key")

    if validator and not validator.validate(x_api_key):
        raise HTTPException(status_code=401, detail="Invalid API key")

    return x_api_key


def get_optional_user_id(x_user_id: Annotated[str | None, Header()] = None) -> str | None:
    """Registered user making the request, None for anonymous callers."""
    if x_user_id is None or not x_user_id.strip():
        return None
    return x_user_id.strip()


def get_user_id_from_header(x_user_id: Annotated[str | None, Header()] = None) -> str:
    """Registered user making the request.

    Raises:
        HTTPException: 401 if the X-User-Id header is missing
    """
    user_id = get_optional_user_id(x_user_id)
    if user_id is None:
        raise HTTPException(status_code=401, detail="Sign in to continue")
    return user_id
