"""
resilience.py — 速率限制 / 退避重試

所有 provider 呼叫共用同一個 RateLimiter（全批次單一請求流、不併發），
並由 call_with_retry() 依 BackoffPolicy 處理暫時性錯誤。
"""

import logging
import time
from typing import Callable, Optional, TypeVar

from clinic_geocoder.providers import ProviderRejectedError, TransientProviderError

logger = logging.getLogger(__name__)

T = TypeVar('T')


class RateLimiter:
    """任兩次對外請求之間至少間隔 min_interval 秒"""

    def __init__(self, min_interval: float = 1.2,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], None] = time.sleep):
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._last_request: Optional[float] = None

    def wait(self):
        """遵守速率限制（必要時睡到間隔足夠），並記錄這次請求時間"""
        if self._last_request is not None:
            elapsed = self._clock() - self._last_request
            if elapsed < self.min_interval:
                self._sleep(self.min_interval - elapsed)
        self._last_request = self._clock()


class BackoffPolicy:
    """
    線性退避：第 n 次重試等待 base_delay * n 秒

    max_retries 為首次呼叫之外最多再試幾次。
    """

    def __init__(self, max_retries: int = 3, base_delay: float = 1.5):
        self.max_retries = max_retries
        self.base_delay = base_delay

    def delay(self, attempt: int) -> float:
        return self.base_delay * attempt

    def should_retry(self, attempt: int) -> bool:
        return attempt <= self.max_retries


def call_with_retry(func: Callable[[], T], limiter: RateLimiter, policy: BackoffPolicy,
                    sleep: Callable[[float], None] = time.sleep,
                    label: str = '') -> Optional[T]:
    """
    呼叫 provider（每次嘗試前都經過 RateLimiter）

    - TransientProviderError（429/5xx/網路）：依 policy 重試，用盡後回傳 None
    - ProviderRejectedError（其他 4xx）：不重試，回傳 None
    - 其他例外照常往外拋
    """
    attempt = 0
    while True:
        limiter.wait()
        try:
            return func()
        except ProviderRejectedError as e:
            logger.debug(f"provider 拒絕 {label}: {e}")
            return None
        except TransientProviderError as e:
            attempt += 1
            if not policy.should_retry(attempt):
                logger.warning(f"重試用盡 {label}: {e}")
                return None
            delay = policy.delay(attempt)
            logger.warning(f"[WARN] 重試第 {attempt} 次，狀態={e.status or 'network'}，等待 {delay:.1f}s {label}")
            sleep(delay)
