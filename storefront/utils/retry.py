# storefront/utils/retry.py
import functools

from redis.exceptions import RedisError
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from storefront.domain.errors import PersistenceError
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


def db_retry():
    return retry(
        reraise=True,
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.1, min=0.1, max=1),
        retry=retry_if_exception_type(OperationalError),
    )


def redis_retry():
    return retry(
        reraise=True,
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
        retry=retry_if_exception_type(RedisError),
    )


def db_guard(action: str):
    """
    Retry na przejsciowych bledach bazy, potem kazdy SQLAlchemyError
    zamieniany na PersistenceError - wyjatki bibliotek nie wychodza z repo.
    """

    def decorator(fn):
        retried = db_retry()(fn)

        @functools.wraps(fn)
        async def wrapper(*args, **kwargs):
            try:
                return await retried(*args, **kwargs)
            except SQLAlchemyError as e:
                logger.error(f"Database error while trying to {action}: {e}")
                raise PersistenceError(f"Failed to {action}") from e

        return wrapper

    return decorator


def redis_guard(action: str):
    def decorator(fn):
        retried = redis_retry()(fn)

        @functools.wraps(fn)
        def wrapper(*args, **kwargs):
            try:
                return retried(*args, **kwargs)
            except RedisError as e:
                logger.error(f"Session storage error while trying to {action}: {e}")
                raise PersistenceError(f"Failed to {action}") from e

        return wrapper

    return decorator
