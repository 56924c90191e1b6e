import hmac

from auth.authenticator import Authenticator


class TokenAuthenticator(Authenticator):
    """Shared-secret check; an empty secret disables authentication"""

    def __init__(self, secret: str | None):
        self.secret = secret or ""

    @property
    def required(self) -> bool:
        return bool(self.secret)

    def authenticate(self, token: str | None) -> bool:
        if not self.required:
            return True
        if token is None:
            return False
        return hmac.compare_digest(token, self.secret)
