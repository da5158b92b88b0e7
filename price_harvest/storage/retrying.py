"""Bounded retries at the storage boundary."""

from __future__ import annotations

import time
from typing import Callable

from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_fixed

from price_harvest.common.errors import StorageError


def storage_retrying(
    attempts: int,
    delay_ms: int,
    *,
    sleep: Callable[[float], None] = time.sleep,
) -> Retrying:
    return Retrying(
        stop=stop_after_attempt(max(attempts, 1)),
        wait=wait_fixed(delay_ms / 1000),
        retry=retry_if_exception_type(StorageError),
        sleep=sleep,
        reraise=True,
    )
