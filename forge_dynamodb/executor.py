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

"""Parallel execution of same-kind DynamoDB batch calls."""

import asyncio
from forge_dynamodb.backoff import Sleep, back_off_execution, is_retryable
from forge_dynamodb.batching import read_item_request_batcher, write_item_request_batcher
from forge_dynamodb.consts import (
    DEFAULT_BATCH_STARTING_DELAY_MS,
    MAX_BATCH_GET_ITEMS,
    MAX_BATCH_WRITE_ITEMS,
)
from forge_dynamodb.document_client import AbstractDocumentStore
from forge_dynamodb.folder import count_requests
from forge_dynamodb.models import BackOffConfig, BatchOutcome, BatchReadMap, BatchWriteMap
from loguru import logger
from typing import Any, Awaitable, Callable, Dict, List, Optional


BatchCallback = Callable[[BatchOutcome], Awaitable[None]]

BatchCall = Callable[[Dict[str, List[Any]]], Awaitable[BatchOutcome]]


def _default_batch_back_off() -> BackOffConfig:
    return BackOffConfig(starting_delay=DEFAULT_BATCH_STARTING_DELAY_MS)


async def execute_batches(
    function_name: str,
    batches: List[Dict[str, List[Any]]],
    call: BatchCall,
    *,
    back_off: BackOffConfig,
    callback: Optional[BatchCallback] = None,
    all_or_nothing: bool = False,
    sleep: Sleep = asyncio.sleep,
) -> List[BatchOutcome]:
    """Run batch calls concurrently and collect their outcomes in batch order.

    Each call is retried in place under ``back_off`` with a starting delay
    scaled by the batch position, which spreads retries of throttled batches.
    Once all calls settled, a batch that still failed with a retryable error
    is recorded as fully unprocessed so the caller can retry it. Any other
    failure is raised, as is every failure when ``all_or_nothing`` is set.

    Args:
        function_name: Name of the calling operation, used in log messages
        batches: Batch maps, each with exactly one table
        call: Coroutine function issuing a single batch call
        back_off: Backoff settings for each batch call
        callback: Optional coroutine function run for every successful batch outcome
        all_or_nothing: Raise on any failed batch instead of recording it as unprocessed
        sleep: Coroutine function used to wait, takes seconds

    Returns:
        List of outcomes, one per batch
    """

    async def run(index: int, batch: Dict[str, List[Any]]) -> BatchOutcome:
        outcome = await back_off_execution(
            function_name, lambda: call(batch), back_off.scaled(index + 1), sleep=sleep
        )
        if callback:
            await callback(outcome)
        return outcome

    results = await asyncio.gather(
        *(run(index, batch) for index, batch in enumerate(batches)), return_exceptions=True
    )

    outcomes: List[BatchOutcome] = []
    failure: Optional[BaseException] = None
    for batch, result in zip(batches, results):
        if not isinstance(result, BaseException):
            outcomes.append(result)
            continue
        if not isinstance(result, Exception):
            raise result
        if all_or_nothing or not await is_retryable(back_off, result):
            logger.error(f'[{function_name}] Batch failed: {result!r}')
            failure = failure or result
            continue
        logger.warning(
            f'[{function_name}] Batch still throttled after retries, '
            f'recording {count_requests(batch)} requests as unprocessed'
        )
        outcomes.append(BatchOutcome(unprocessed={k: list(v) for k, v in batch.items()}))

    if failure is not None:
        raise failure
    return outcomes


async def batch_write_parallel(
    store: AbstractDocumentStore,
    write_requests: BatchWriteMap,
    *,
    batch_size: int = MAX_BATCH_WRITE_ITEMS,
    callback: Optional[BatchCallback] = None,
    back_off: Optional[BackOffConfig] = None,
    all_or_nothing: bool = False,
    sleep: Sleep = asyncio.sleep,
) -> List[BatchOutcome]:
    """Split a write request map into batches and write them in parallel.

    Args:
        store: Document store to write to
        write_requests: Map from table name to write requests
        batch_size: Requests per batch call (default = 25)
        callback: Optional coroutine function run for every written batch
        back_off: Backoff settings for each batch call
        all_or_nothing: Raise on any failed batch instead of recording it as unprocessed
        sleep: Coroutine function used to wait, takes seconds

    Returns:
        List of outcomes, one per batch
    """
    batches = write_item_request_batcher(write_requests, batch_size)
    return await execute_batches(
        'batch_write_parallel',
        batches,
        store.batch_write,
        back_off=back_off or _default_batch_back_off(),
        callback=callback,
        all_or_nothing=all_or_nothing,
        sleep=sleep,
    )


async def batch_read(
    store: AbstractDocumentStore,
    read_requests: BatchReadMap,
    *,
    batch_size: int = MAX_BATCH_GET_ITEMS,
    callback: Optional[BatchCallback] = None,
    back_off: Optional[BackOffConfig] = None,
    all_or_nothing: bool = False,
    sleep: Sleep = asyncio.sleep,
) -> List[BatchOutcome]:
    """Split a read request map into batches and read them in parallel.

    Args:
        store: Document store to read from
        read_requests: Map from table name to keys
        batch_size: Keys per batch call (default = 100)
        callback: Optional coroutine function run for every read batch
        back_off: Backoff settings for each batch call
        all_or_nothing: Raise on any failed batch instead of recording it as unprocessed
        sleep: Coroutine function used to wait, takes seconds

    Returns:
        List of outcomes, one per batch
    """
    batches = read_item_request_batcher(read_requests, batch_size)
    return await execute_batches(
        'batch_read',
        batches,
        store.batch_read,
        back_off=back_off or _default_batch_back_off(),
        callback=callback,
        all_or_nothing=all_or_nothing,
        sleep=sleep,
    )
