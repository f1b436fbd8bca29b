"""Security helpers for webhook validation."""

from __future__ import annotations

import hmac


def verify_gitlab_token(secret: str | None, provided_token: str | None) -> bool:
    """Check the ``X-Gitlab-Token`` header using a constant-time comparison.

    An unset secret disables verification.
    """

    if not secret:
        return True
    if not provided_token:
        return False
    return hmac.compare_digest(secret.encode("utf-8"), provided_token.encode("utf-8"))
