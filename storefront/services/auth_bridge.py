# storefront/services/auth_bridge.py
from enum import Enum
from typing import Awaitable, Callable

from storefront.utils.logging import get_logger

logger = get_logger(__name__)

AuthProvider = Callable[[], Awaitable[str | None]]
LoginHandler = Callable[[str], Awaitable[None]]
LogoutHandler = Callable[[], Awaitable[None]]


class AuthState(str, Enum):
    ANONYMOUS = "anonymous"
    AUTHENTICATED = "authenticated"


class AuthBridge:
    """
    Maszyna stanow Anonymous / Authenticated.
    Sama autentykacja jest poza serwisem - tu trafia tylko sygnal (user_id albo None).

    ANONYMOUS -> AUTHENTICATED  => on_login(user_id)
    AUTHENTICATED -> ANONYMOUS  => on_logout()
    ten sam stan i ten sam user => no-op
    zmiana usera w AUTHENTICATED => on_login(nowy user)
    """

    def __init__(self, provider: AuthProvider | None = None):
        self.provider = provider
        self.state = AuthState.ANONYMOUS
        self.user_id: str | None = None
        self._subscribers: list[tuple[LoginHandler, LogoutHandler]] = []

    @property
    def is_authenticated(self) -> bool:
        return self.state is AuthState.AUTHENTICATED

    def subscribe(self, on_login: LoginHandler, on_logout: LogoutHandler) -> Callable[[], None]:
        entry = (on_login, on_logout)
        self._subscribers.append(entry)

        def unsubscribe() -> None:
            if entry in self._subscribers:
                self._subscribers.remove(entry)

        return unsubscribe

    def _set(self, user_id: str | None) -> None:
        self.user_id = user_id
        self.state = AuthState.AUTHENTICATED if user_id else AuthState.ANONYMOUS

    async def start(self) -> str | None:
        """Stan poczatkowy z providera, bez emitowania przejscia."""
        user_id = await self.provider() if self.provider else None
        self._set(user_id or None)
        logger.info(f"Initial auth state: {self.state.value} (user={self.user_id})")
        return self.user_id

    async def observe(self, user_id: str | None) -> bool:
        """Zwraca True jesli nastapilo przejscie."""
        user_id = user_id or None
        if user_id == self.user_id:
            return False

        previous = self.user_id
        self._set(user_id)

        if user_id:
            logger.info(f"Auth transition: login user={user_id} (previous={previous})")
            for on_login, _ in list(self._subscribers):
                await on_login(user_id)
        else:
            logger.info(f"Auth transition: logout user={previous}")
            for _, on_logout in list(self._subscribers):
                await on_logout()

        return True
