"""Session and role gating for the JSON API."""
from functools import wraps

from django.http import JsonResponse

# HTTP method -> permission action
METHOD_ACTIONS = {
    "GET": "view",
    "POST": "create",
    "PUT": "update",
    "PATCH": "update",
    "DELETE": "delete",
}


def user_can(user, section: str, action: str) -> bool:
    """True if the user's role grants ``section.action``. Superusers always pass."""
    if not getattr(user, "is_authenticated", False):
        return False
    if user.is_superuser:
        return True
    account = getattr(user, "account", None)
    role = getattr(account, "role", None)
    return bool(role and role.allows(section, action))


def api_permission_required(section: str, action: str | None = None):
    """
    401 for anonymous callers, 403 when the role lacks the permission.
    Without ``action`` the request method picks it (GET -> view, POST -> create, ...).
    """
    def decorator(view):
        @wraps(view)
        def wrapper(request, *args, **kwargs):
            if not request.user.is_authenticated:
                return JsonResponse({"ok": False, "error": "Authentication required."}, status=401)
            needed = action or METHOD_ACTIONS.get(request.method, "view")
            if not user_can(request.user, section, needed):
                return JsonResponse({"ok": False, "error": "Permission denied."}, status=403)
            return view(request, *args, **kwargs)
        return wrapper
    return decorator
