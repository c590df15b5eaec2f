# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Exponential backoff with named jitter strategies for async operations."""

import asyncio
import inspect
import random
from forge_dynamodb.models import BackOffConfig, Jitter
from loguru import logger
from typing import Awaitable, Callable, Dict, TypeVar


T = TypeVar('T')

Sleep = Callable[[float], Awaitable[None]]


def full_jitter(delay: float) -> float:
    """Randomize the delay uniformly between 0 and ``delay``."""
    return random.uniform(0, delay)


def no_jitter(delay: float) -> float:
    """Keep the computed delay."""
    return delay


JITTER_STRATEGIES: Dict[Jitter, Callable[[float], float]] = {
    Jitter.FULL: full_jitter,
    Jitter.NONE: no_jitter,
}


def compute_delay(back_off: BackOffConfig, attempt: int) -> float:
    """Compute the delay before the retry following a failed attempt.

    Args:
        back_off: Backoff settings
        attempt: Number of the attempt that just failed, starting at 1

    Returns:
        float: Delay in milliseconds
    """
    delay = back_off.starting_delay * back_off.time_multiple ** max(attempt - 1, 0)
    if back_off.max_delay is not None:
        delay = min(delay, back_off.max_delay)
    return JITTER_STRATEGIES[back_off.jitter](delay)


async def is_retryable(back_off: BackOffConfig, error: BaseException) -> bool:
    """Evaluate the error condition of ``back_off``, which may be sync or async."""
    condition = back_off.error_condition
    if condition is None:
        return True
    retryable = condition(error)
    if inspect.isawaitable(retryable):
        retryable = await retryable
    return bool(retryable)


async def should_retry(
    function_name: str, back_off: BackOffConfig, error: BaseException, attempt: int
) -> bool:
    """Decide whether a failed attempt is retried, logging the decision.

    Args:
        function_name: Name of the calling operation, used in log messages
        back_off: Backoff settings holding the error condition
        error: The error raised by the attempt
        attempt: Number of the attempt that failed, starting at 1

    Returns:
        bool: True if the error is retryable
    """
    if await is_retryable(back_off, error):
        logger.info(
            f'[{function_name}] Attempt {attempt} failed. '
            f'{back_off.num_of_attempts - attempt} left.'
        )
        return True

    logger.warning(f'[{function_name}] Not retryable error occurred: {error!r}')
    return False


async def back_off_execution(
    function_name: str,
    func: Callable[[], Awaitable[T]],
    back_off: BackOffConfig,
    *,
    sleep: Sleep = asyncio.sleep,
) -> T:
    """Execute an async operation under exponential backoff.

    Retryable errors are retried until ``back_off.num_of_attempts`` attempts
    were made. Non-retryable errors and the error of the last attempt are
    raised unchanged.

    Args:
        function_name: Name of the calling operation, used in log messages
        func: Operation to execute
        back_off: Backoff settings
        sleep: Coroutine function used to wait, takes seconds

    Returns:
        The result of the first successful attempt
    """
    attempt = 0
    while True:
        try:
            return await func()
        except Exception as e:
            attempt += 1
            if not await should_retry(function_name, back_off, e, attempt):
                raise
            if attempt >= back_off.num_of_attempts:
                logger.error(f'[{function_name}] Giving up after {attempt} attempts: {e!r}')
                raise
            await sleep(compute_delay(back_off, attempt) / 1000)
