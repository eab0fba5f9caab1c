# storefront/repos/session_store.py
import json

import redis
from pydantic import ValidationError as SchemaError

from storefront.domain.schemas import CartLine
from storefront.utils.settings import REDIS_URL, SESSION_CART_KEY, SESSION_TTL_SECONDS
from storefront.utils.logging import get_logger
from storefront.utils.retry import redis_guard

logger = get_logger(__name__)


def session_client(url: str | None = None) -> redis.Redis:
    return redis.Redis.from_url(url or REDIS_URL, decode_responses=True)


class SessionStore:
    """
    Koszyk anonimowy - snapshot jako tablica JSON pod jednym kluczem na sesje.
    -operacje synchroniczne (nie oddaja petli zdarzen), kazde wywolanie blokuje petle
     na czas round-tripu do redisa - GET/SET jednego klucza, wiec tylko krotko
    -TTL odnawiany przy kazdym zapisie, zachowuje sie jak sessionStorage karty
    -brak koordynacji miedzy kartami, last writer wins
    """

    def __init__(
        self,
        session_id: str,
        client: redis.Redis | None = None,
        ttl: int = SESSION_TTL_SECONDS,
    ):
        if not session_id:
            raise ValueError("session_id is required")
        self.redis = client or session_client()
        self.ttl = ttl
        self.key = f"session:{session_id}:{SESSION_CART_KEY}"

    @redis_guard("read session cart")
    def _read(self) -> str | None:
        return self.redis.get(self.key)

    @redis_guard("write session cart")
    def _write(self, payload: str) -> None:
        self.redis.set(self.key, payload, ex=self.ttl)

    def load(self) -> list[CartLine]:
        raw = self._read()
        if not raw:
            return []

        try:
            entries = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning(f"Unreadable session cart under {self.key}: {e}")
            return []

        if not isinstance(entries, list):
            logger.warning(f"Session cart under {self.key} is not a list, ignoring")
            return []

        lines: list[CartLine] = []
        seen: set[str] = set()
        for entry in entries:
            try:
                line = CartLine.model_validate(entry)
            except SchemaError as e:
                logger.warning(f"Dropping malformed session cart entry: {e.errors()}")
                continue
            if line.product_id in seen:
                logger.warning(f"Dropping duplicate session line for product {line.product_id}")
                continue
            seen.add(line.product_id)
            lines.append(line)

        return lines

    def save(self, lines: list[CartLine]) -> list[CartLine]:
        payload = json.dumps([line.model_dump(mode="json") for line in lines])
        self._write(payload)
        return list(lines)

    def upsert(self, line: CartLine) -> CartLine:
        lines = self.load()
        for index, existing in enumerate(lines):
            if existing.product_id == line.product_id:
                lines[index] = line
                break
        else:
            lines.append(line)

        self.save(lines)
        return line

    def delete(self, line_id: str) -> bool:
        lines = self.load()
        remaining = [line for line in lines if line.id != line_id]
        if len(remaining) == len(lines):
            return False

        self.save(remaining)
        return True

    @redis_guard("clear session cart")
    def clear(self) -> None:
        self.redis.delete(self.key)
