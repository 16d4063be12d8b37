import logging
from functools import wraps

import jwt
from django.conf import settings
from django.http import JsonResponse

logger = logging.getLogger(__name__)


def _bearer_token(request) -> str:
    auth = request.headers.get("Authorization", "")
    if not auth.startswith("Bearer "):
        return ""
    return auth.split(" ", 1)[1].strip()


def _is_admin_token(token: str) -> bool:
    secret = getattr(settings, "JWT_SECRET", "")
    if not (token and secret):
        return False
    try:
        claims = jwt.decode(token, secret, algorithms=[getattr(settings, "JWT_ALGORITHM", "HS256")])
    except jwt.PyJWTError as e:
        logger.info("Rejected admin bearer token: %s", e)
        return False
    return claims.get("role") == "admin"


def admin_required(view):
    """Allow Django staff sessions or an admin-role bearer JWT."""

    @wraps(view)
    def wrapper(request, *args, **kwargs):
        user = getattr(request, "user", None)
        if user is not None and user.is_authenticated and user.is_staff:
            return view(request, *args, **kwargs)
        if _is_admin_token(_bearer_token(request)):
            return view(request, *args, **kwargs)
        return JsonResponse({"success": False, "message": "Admin access required"}, status=401)

    return wrapper
