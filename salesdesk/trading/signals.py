import logging

from django.contrib.auth.signals import user_logged_in, user_logged_out, user_login_failed
from django.dispatch import receiver

from .models import SessionLog

logger = logging.getLogger(__name__)


def _client_address(request):
    if request is None:
        return ""
    forwarded = request.META.get("HTTP_X_FORWARDED_FOR", "")
    return forwarded.split(",")[0].strip() if forwarded else request.META.get("REMOTE_ADDR", "")


# ---------------------------------------------------------
# Session log
# ---------------------------------------------------------
@receiver(user_logged_in)
def log_login(sender, request, user, **kwargs):
    SessionLog.objects.create(user=user, action=SessionLog.LOGIN, details=_client_address(request))
    logger.info("User %s logged in", user.get_username())


@receiver(user_logged_out)
def log_logout(sender, request, user, **kwargs):
    # user is None when the session had already expired
    if user is None:
        return
    SessionLog.objects.create(user=user, action=SessionLog.LOGOUT, details=_client_address(request))
    logger.info("User %s logged out", user.get_username())


@receiver(user_login_failed)
def log_login_failed(sender, credentials, request=None, **kwargs):
    username = credentials.get("username", "")
    SessionLog.objects.create(
        user=None,
        action=SessionLog.LOGIN_FAILED,
        details=f"{username} {_client_address(request)}".strip(),
    )
    logger.warning("Failed login for %r", username)
