import hmac
from typing import Optional, Union

from pydantic import SecretStr


class AdminAuthorizer:
    """Capability check for the shared administrative credential.

    Uses :func:`hmac.compare_digest` for constant-time comparison to prevent
    timing-based side-channel attacks. Without a configured secret every
    credential is refused, so administrative operations are disabled.

    Example::

        authorizer = AdminAuthorizer(secret=settings.admin_token)
        if not authorizer("presented-token"):
            raise Unauthorized("Invalid admin credential")
    """

    def __init__(self, secret: Union[SecretStr, str, None] = None) -> None:
        if isinstance(secret, SecretStr):
            secret = secret.get_secret_value()

        self._secret = secret or None

    @property
    def enabled(self) -> bool:
        return self._secret is not None

    def __call__(self, credential: Optional[str]) -> bool:
        if self._secret is None or not credential:
            return False

        return hmac.compare_digest(
            self._secret.encode("utf-8"),
            credential.encode("utf-8"),
        )
