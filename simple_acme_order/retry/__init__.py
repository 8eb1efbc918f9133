# Copyright 2023 Jared Hendrickson
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#    http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
"""Bounded, fixed-interval retries with cooperative cancellation."""
import logging
import threading
import time
from typing import Any, Callable, Optional

log = logging.getLogger(__name__)


class CancellationToken:
    """
    A cancellation signal shared by every component taking part in an order. The token may be cancelled from any
    thread; waits in progress wake up immediately.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        """Signals cancellation."""
        self._event.set()

    @property
    def cancelled(self) -> bool:
        """Whether cancellation has been signaled."""
        return self._event.is_set()

    def wait(self, seconds: float) -> bool:
        """
        Sleeps for up to `seconds`, waking early if cancellation is signaled.

        Returns:
            bool: True if cancellation was signaled before or during the wait.
        """
        if seconds <= 0:
            return self.cancelled
        return self._event.wait(seconds)


def retry_until(
        operation: Callable[[], Any],
        needs_retry: Callable[[Any], bool],
        attempts: int,
        delay: float,
        cancel_token: CancellationToken = None,
        on_retry: Callable[[Any, int, float], None] = None
) -> Optional[Any]:
    """
    Invokes `operation` until `needs_retry` is satisfied with its result or the retry budget runs out. The
    operation runs once, then at most `attempts` more times with a constant `delay` between invocations.

    Args:
        operation (callable): A zero-argument callable producing a result.
        needs_retry (callable): A predicate receiving the last result, returning True while it is still unsatisfactory.
        attempts (int): The number of retries allowed after the first invocation.
        delay (float): The amount of time (in seconds) to wait between invocations.
        cancel_token (simple_acme_order.retry.CancellationToken): Aborts the loop when cancelled.
        on_retry (callable): Called with the unsatisfactory result, the retry number and the delay before each wait.

    Returns:
        The last result produced by `operation`, satisfactory or not. None if cancellation was signaled.

    Examples:
        >>> retry_until(lambda: resolver.query_txt(name, nameservers), lambda r: not r.values, attempts=10, delay=5)
    """
    if cancel_token and cancel_token.cancelled:
        return None

    result = operation()
    retry = 0

    while needs_retry(result) and retry < attempts:
        if cancel_token and cancel_token.cancelled:
            return None

        retry += 1
        if on_retry:
            on_retry(result, retry, delay)

        # Stop waiting as soon as cancellation is signaled, without invoking the operation again
        if cancel_token:
            if cancel_token.wait(delay):
                log.debug("Retry loop cancelled while waiting for attempt %d of %d", retry, attempts)
                return None
        elif delay > 0:
            time.sleep(delay)

        result = operation()

    if cancel_token and cancel_token.cancelled:
        return None

    return result
