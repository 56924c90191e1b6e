from abc import ABC, abstractmethod


class Authenticator(ABC):
    """Decides whether a transport client may use the bridge"""

    @abstractmethod
    def authenticate(self, token: str | None) -> bool:
        pass

    @property
    def required(self) -> bool:
        return True
