from typing import Optional

from fastapi import Depends, Request

from storefront.application.errors import AuthenticationRequired, PermissionDenied
from storefront.auth_local import CurrentUser, decode_access_token, user_from_claims
from storefront.core.logging_config import set_request_context
from storefront.infrastructure.cart_storage import get_cart_storage
from storefront.infrastructure.payment_gateway import PaymentGateway

BEARER_PREFIX = "Bearer "

def optional_user(request: Request) -> Optional[CurrentUser]:
    """The caller behind the bearer token, or None for a guest. A bad token is never treated as a guest."""
    auth_header = request.headers.get("Authorization")
    if not auth_header:
        return None
    if not auth_header.startswith(BEARER_PREFIX):
        raise AuthenticationRequired("Malformed Authorization header")
    claims = decode_access_token(auth_header.split(" ", 1)[1])
    user = user_from_claims(claims) if claims else None
    if user is None:
        raise AuthenticationRequired("Invalid token")
    set_request_context(user_id=user.id)
    return user

def require_user(user: Optional[CurrentUser] = Depends(optional_user)) -> CurrentUser:
    if user is None:
        raise AuthenticationRequired()
    return user

def require_admin(user: CurrentUser = Depends(require_user)) -> CurrentUser:
    if not user.is_admin:
        raise PermissionDenied("Admin access required")
    return user

def get_payment_gateway() -> PaymentGateway:
    return PaymentGateway()

def get_carts():
    return get_cart_storage()
