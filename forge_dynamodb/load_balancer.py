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

"""Load balanced bulk reads and writes for DynamoDB.

A workload is cut into capacity sized super-batches that run strictly one
after another. Each super-batch runs as parallel micro-batches; whatever the
store leaves unprocessed is retried with exponential backoff before the next
super-batch starts. A cooldown between super-batches lets the consumed
capacity recover, which keeps the load on the table predictable.
"""

import asyncio
from enum import Enum
from forge_dynamodb.backoff import Sleep, compute_delay, should_retry
from forge_dynamodb.batching import (
    average_item_size_kb,
    normalize_batch_size,
    read_item_request_batcher,
    write_item_request_batcher,
)
from forge_dynamodb.document_client import AbstractDocumentStore
from forge_dynamodb.errors import UnprocessedResidualError
from forge_dynamodb.executor import BatchCallback, batch_read, batch_write_parallel
from forge_dynamodb.folder import count_requests, fold_outcomes
from forge_dynamodb.models import (
    BackOffConfig,
    BatchOutcome,
    BatchReadMap,
    BatchRunResult,
    BatchWriteMap,
    ReadLoadConfig,
    WriteLoadConfig,
)
from loguru import logger
from typing import Any, Awaitable, Callable, Dict, List, Optional


RoundExecutor = Callable[[Dict[str, List[Any]]], Awaitable[List[BatchOutcome]]]


class RetryState(str, Enum):
    """States of the unprocessed work retry loop."""

    PENDING = 'pending'
    IN_FLIGHT = 'in_flight'
    PARTIALLY_FAILED = 'partially_failed'
    EXHAUSTED = 'exhausted'
    DONE = 'done'


class UnprocessedRetryLoop:
    """Retries unprocessed work round by round until nothing is left.

    Every round waits the backoff delay, re-runs the parallel executor on the
    residual and folds its outcomes. A raised error that the backoff error
    condition accepts keeps the residual pending for the next round; other
    errors propagate. When ``num_of_attempts`` rounds ran and work is left,
    the loop is exhausted and raises UnprocessedResidualError.
    """

    def __init__(
        self,
        function_name: str,
        execute: RoundExecutor,
        back_off: BackOffConfig,
        *,
        sleep: Sleep = asyncio.sleep,
    ):
        """Initialize the retry loop.

        Args:
            function_name: Name of the calling operation, used in log messages
            execute: Coroutine function running one parallel round on a request map
            back_off: Backoff settings bounding the number of rounds and their delays
            sleep: Coroutine function used to wait, takes seconds
        """
        self.function_name = function_name
        self.execute = execute
        self.back_off = back_off
        self.sleep = sleep
        self.state = RetryState.PENDING
        self.rounds = 0
        self.items: List[Dict[str, Any]] = []
        self.consumed_capacity_units = 0.0
        self.last_error: Optional[BaseException] = None

    async def run(self, residual: Dict[str, List[Any]]) -> List[Dict[str, Any]]:
        """Retry ``residual`` until it is processed.

        Args:
            residual: Per-table requests left unprocessed

        Returns:
            Items returned by the retry rounds

        Raises:
            UnprocessedResidualError: If work is left after the last round
        """
        while residual:
            if self.rounds >= self.back_off.num_of_attempts:
                self.state = RetryState.EXHAUSTED
                raise UnprocessedResidualError(
                    self.function_name, residual, self.rounds
                ) from self.last_error

            self.rounds += 1
            logger.info(
                f'[{self.function_name}] Processing unprocessed: round {self.rounds} of '
                f'{self.back_off.num_of_attempts}, {count_requests(residual)} requests'
            )
            logger.debug(f'[{self.function_name}] Processing unprocessed {residual}')
            await self.sleep(compute_delay(self.back_off, self.rounds) / 1000)

            self.state = RetryState.IN_FLIGHT
            try:
                outcomes = await self.execute(residual)
            except Exception as e:
                if not await should_retry(self.function_name, self.back_off, e, self.rounds):
                    raise
                self.last_error = e
                self.state = RetryState.PARTIALLY_FAILED
                continue

            folded = fold_outcomes(outcomes)
            self.items.extend(folded.items)
            self.consumed_capacity_units += folded.consumed_capacity_units
            residual = folded.unprocessed
            if residual:
                self.state = RetryState.PARTIALLY_FAILED

        self.state = RetryState.DONE
        return self.items


async def _run_super_batches(
    function_name: str,
    super_batches: List[Dict[str, List[Any]]],
    execute: RoundExecutor,
    back_off: BackOffConfig,
    cooldown_seconds: float,
    sleep: Sleep,
) -> BatchRunResult:
    result = BatchRunResult(
        requests_submitted=sum(count_requests(batch) for batch in super_batches)
    )
    for index, super_batch in enumerate(super_batches):
        if index > 0:
            # Let the rolling capacity window recover before the next super-batch
            await sleep(cooldown_seconds)

        logger.debug(
            f'[{function_name}] Super-batch {index + 1} of {len(super_batches)}: '
            f'{count_requests(super_batch)} requests'
        )
        folded = fold_outcomes(await execute(super_batch))
        result.items.extend(folded.items)
        consumed = folded.consumed_capacity_units

        if folded.unprocessed:
            retry_loop = UnprocessedRetryLoop(function_name, execute, back_off, sleep=sleep)
            try:
                result.items.extend(await retry_loop.run(folded.unprocessed))
            finally:
                result.retry_rounds += retry_loop.rounds
                consumed += retry_loop.consumed_capacity_units
        logger.debug(
            f'[{function_name}] Super-batch {index + 1} consumed {consumed} capacity units'
        )
        result.consumed_capacity_units += consumed
        result.super_batches += 1
    return result


async def batch_write_sequential(
    store: AbstractDocumentStore,
    write_requests: BatchWriteMap,
    config: Optional[WriteLoadConfig] = None,
    *,
    callback: Optional[BatchCallback] = None,
    sleep: Sleep = asyncio.sleep,
) -> BatchRunResult:
    """Write a workload of any size as a load balanced stream of super-batches.

    The super-batch size is the write capacity per second divided by the
    number of indices and by the average item size in KB.

    Args:
        store: Document store to write to
        write_requests: Map from table name to write requests
        config: Load balancing settings, defaults to WriteLoadConfig()
        callback: Optional coroutine function run for every written micro-batch
        sleep: Coroutine function used to wait, takes seconds

    Returns:
        BatchRunResult: Counters of the settled operation

    Raises:
        UnprocessedResidualError: If a super-batch keeps unprocessed requests after all retries
    """
    config = config or WriteLoadConfig()
    item_size_kb = average_item_size_kb(write_requests)
    super_batch_size = normalize_batch_size(
        config.capacity_per_second / config.number_indices / item_size_kb
    )
    logger.debug(
        f'[batch_write_sequential] Average item size {item_size_kb:.2f} KB, '
        f'super-batch size {super_batch_size}'
    )

    async def execute(requests: Dict[str, List[Any]]) -> List[BatchOutcome]:
        return await batch_write_parallel(
            store,
            requests,
            batch_size=config.batch_size,
            callback=callback,
            back_off=config.batch_back_off,
            all_or_nothing=config.all_or_nothing,
            sleep=sleep,
        )

    return await _run_super_batches(
        'batch_write_sequential',
        write_item_request_batcher(write_requests, super_batch_size),
        execute,
        config.unprocessed_back_off,
        config.cooldown_seconds,
        sleep,
    )


def _read_round_executor(
    store: AbstractDocumentStore,
    config: ReadLoadConfig,
    callback: Optional[BatchCallback],
    sleep: Sleep,
) -> RoundExecutor:
    async def execute(requests: Dict[str, List[Any]]) -> List[BatchOutcome]:
        return await batch_read(
            store,
            requests,
            batch_size=config.batch_size,
            callback=callback,
            back_off=config.batch_back_off,
            all_or_nothing=config.all_or_nothing,
            sleep=sleep,
        )

    return execute


async def batch_read_sequential(
    store: AbstractDocumentStore,
    read_requests: BatchReadMap,
    config: Optional[ReadLoadConfig] = None,
    *,
    callback: Optional[BatchCallback] = None,
    sleep: Sleep = asyncio.sleep,
) -> BatchRunResult:
    """Read a workload of any size as a load balanced stream of super-batches.

    Every super-batch is processed; returned items are concatenated in
    super-batch order.

    Args:
        store: Document store to read from
        read_requests: Map from table name to keys
        config: Load balancing settings, defaults to ReadLoadConfig()
        callback: Optional coroutine function run for every read micro-batch
        sleep: Coroutine function used to wait, takes seconds

    Returns:
        BatchRunResult: Read items and counters of the settled operation

    Raises:
        UnprocessedResidualError: If a super-batch keeps unprocessed keys after all retries
    """
    config = config or ReadLoadConfig()
    super_batch_size = normalize_batch_size(config.capacity_per_second / config.number_indices)

    return await _run_super_batches(
        'batch_read_sequential',
        read_item_request_batcher(read_requests, super_batch_size),
        _read_round_executor(store, config, callback, sleep),
        config.unprocessed_back_off,
        config.cooldown_seconds,
        sleep,
    )


async def batch_read_parallel(
    store: AbstractDocumentStore,
    read_requests: BatchReadMap,
    config: Optional[ReadLoadConfig] = None,
    *,
    callback: Optional[BatchCallback] = None,
    sleep: Sleep = asyncio.sleep,
) -> BatchRunResult:
    """Read all keys in one parallel round, then retry what was left unprocessed.

    Args:
        store: Document store to read from
        read_requests: Map from table name to keys
        config: Batch settings, defaults to ReadLoadConfig()
        callback: Optional coroutine function run for every read micro-batch
        sleep: Coroutine function used to wait, takes seconds

    Returns:
        BatchRunResult: Read items and counters of the settled operation
    """
    config = config or ReadLoadConfig()
    requests_submitted = count_requests(read_requests)
    if not requests_submitted:
        return BatchRunResult()

    return await _run_super_batches(
        'batch_read_parallel',
        [read_requests],
        _read_round_executor(store, config, callback, sleep),
        config.unprocessed_back_off,
        config.cooldown_seconds,
        sleep,
    )
