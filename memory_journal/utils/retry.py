"""
Retry with exponential backoff for idempotent calls to AWS services.
"""

import random
import time
from typing import Callable, Tuple, Type, TypeVar

from botocore.exceptions import BotoCoreError, ClientError

from .errors import MemoryJournalError
from .logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar('T')

AWS_ERRORS: Tuple[Type[BaseException], ...] = (ClientError, BotoCoreError)


def backoff_delay(attempt: int, base_delay: float) -> float:
    """Exponential backoff with up to one second of jitter."""
    return base_delay * (2**attempt) + random.uniform(0, 1)


def call_with_retry(operation: Callable[[], T],
                    attempts: int,
                    base_delay: float,
                    failure: Type[MemoryJournalError],
                    label: str,
                    retryable: Tuple[Type[BaseException], ...] = AWS_ERRORS) -> T:
    """
    Run ``operation`` until it succeeds or the attempts are used up.

    Args:
        operation: Zero-argument callable performing one request
        attempts: Maximum number of attempts (at least one is made)
        base_delay: Delay before the second attempt, doubled for each further one
        failure: Domain error raised when the call cannot be completed
        label: Service name used in log lines and error messages
        retryable: Exception types worth another attempt

    Returns:
        Whatever ``operation`` returns

    Raises:
        failure: On the last retryable error or any other unexpected error
    """
    attempts = max(1, attempts)
    for attempt in range(attempts):
        try:
            logger.debug(f'{label} request attempt {attempt + 1}/{attempts}')
            return operation()

        except retryable as e:
            logger.warning(f'{label} attempt {attempt + 1}/{attempts} failed: {e}')
            if attempt == attempts - 1:
                raise failure(f'{label} failed after {attempts} attempts: {e}') from e
            time.sleep(backoff_delay(attempt, base_delay))

        except MemoryJournalError:
            raise
        except Exception as e:
            logger.error(f'Unexpected error in {label}: {e}')
            raise failure(f'Unexpected {label} error: {e}') from e

    raise failure(f'{label} made no attempts')
