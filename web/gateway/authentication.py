"""Identity passed down by the upstream API gateway.

The gateway authenticates end users and stamps two headers on every
request it forwards: ``X-User-Id`` (the caller) and ``X-Merchant-Id``
(the merchant the caller operates, for merchant staff). This service
trusts those headers and never sees credentials. A request without
``X-User-Id`` is an anonymous guest.
"""

from dataclasses import dataclass
from typing import Optional

from rest_framework import authentication, exceptions, permissions


@dataclass(frozen=True)
class Caller:
    """The authenticated principal attached to ``request.user``."""

    user_id: str
    merchant_id: Optional[str] = None

    @property
    def pk(self) -> str:
        # throttles key authenticated callers on ``user.pk``
        return self.user_id

    @property
    def is_authenticated(self) -> bool:
        return True

    @property
    def is_merchant(self) -> bool:
        return bool(self.merchant_id)


class GatewayHeaderAuthentication(authentication.BaseAuthentication):
    USER_HEADER = "HTTP_X_USER_ID"
    MERCHANT_HEADER = "HTTP_X_MERCHANT_ID"

    def authenticate(self, request):
        user_id = request.META.get(self.USER_HEADER, "").strip()
        if not user_id:
            return None
        merchant_id = request.META.get(self.MERCHANT_HEADER, "").strip() or None
        return Caller(user_id=user_id, merchant_id=merchant_id), None

    def authenticate_header(self, request):
        # Makes DRF answer 401 (not 403) for anonymous callers
        return "Gateway"


class IsMerchant(permissions.BasePermission):
    """Allow callers acting for a merchant.

    Anonymous callers get 401; authenticated callers without a merchant
    get 403.
    """

    message = "Merchant access required"

    def has_permission(self, request, view):
        user = request.user
        if not getattr(user, "is_authenticated", False):
            raise exceptions.NotAuthenticated()
        return getattr(user, "is_merchant", False)


def caller_of(request) -> Optional[Caller]:
    user = getattr(request, "user", None)
    return user if isinstance(user, Caller) else None
