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

"""Tests for the sequential load balancer and the unprocessed retry loop."""

import pytest
from botocore.exceptions import ClientError
from forge_dynamodb.errors import UnprocessedResidualError
from forge_dynamodb.load_balancer import (
    RetryState,
    UnprocessedRetryLoop,
    batch_read_parallel,
    batch_read_sequential,
    batch_write_sequential,
)
from forge_dynamodb.models import BatchOutcome, ReadLoadConfig, WriteLoadConfig
from tests.conftest import (
    FakeDocumentStore,
    keep_all,
    keep_first_half,
    no_jitter_back_off,
    put_requests,
    read_keys,
    throttling_error,
    validation_error,
)
from unittest.mock import AsyncMock, patch


def write_config(**kwargs) -> WriteLoadConfig:
    """Write load settings with deterministic backoff delays."""
    kwargs.setdefault('batch_back_off', no_jitter_back_off(starting_delay=1000))
    kwargs.setdefault('unprocessed_back_off', no_jitter_back_off(starting_delay=2000))
    return WriteLoadConfig(**kwargs)


def read_config(**kwargs) -> ReadLoadConfig:
    """Read load settings with deterministic backoff delays."""
    kwargs.setdefault('batch_back_off', no_jitter_back_off(starting_delay=1000))
    kwargs.setdefault('unprocessed_back_off', no_jitter_back_off(starting_delay=2000))
    return ReadLoadConfig(**kwargs)


class TestBatchWriteSequential:
    """Tests for batch_write_sequential."""

    @pytest.mark.asyncio
    async def test_single_super_batch_without_backoff(self, store, sleep):
        """130 puts fit one super-batch: six concurrent calls, no retry, no wait."""
        with (
            patch('forge_dynamodb.backoff.should_retry') as mock_should_retry,
            patch('forge_dynamodb.load_balancer.UnprocessedRetryLoop') as mock_retry_loop,
        ):
            result = await batch_write_sequential(
                store, {'T': put_requests(130)}, write_config(), sleep=sleep
            )

        assert [len(call['T']) for call in store.write_calls] == [25, 25, 25, 25, 25, 5]
        assert result.super_batches == 1
        assert result.retry_rounds == 0
        assert result.requests_submitted == 130
        assert len(store.tables['T']) == 130
        assert sleep.calls == []
        mock_should_retry.assert_not_called()
        mock_retry_loop.assert_not_called()

    @pytest.mark.asyncio
    async def test_converges_after_three_retry_rounds(self, sleep):
        """Half of the work stays unprocessed twice more, the third retry round completes it."""
        store = FakeDocumentStore(script=[keep_first_half, keep_first_half, keep_first_half, None])

        result = await batch_write_sequential(
            store, {'recipes': put_requests(10)}, write_config(), sleep=sleep
        )

        assert result.retry_rounds == 3
        assert [len(call['recipes']) for call in store.write_calls] == [10, 5, 2, 1]
        assert sleep.calls == [2.0, 4.0, 8.0]
        assert len(store.tables['recipes']) == 10

    @pytest.mark.asyncio
    async def test_super_batches_with_cooldown(self, store, sleep):
        """A budget of 50 WCU splits 130 puts into super-batches of 50, 50 and 30."""
        result = await batch_write_sequential(
            store,
            {'recipes': put_requests(130)},
            write_config(wcu_per_second=50, cooldown_seconds=1.5),
            sleep=sleep,
        )

        assert result.super_batches == 3
        assert [len(call['recipes']) for call in store.write_calls] == [25, 25, 25, 25, 25, 5]
        assert sleep.calls == [1.5, 1.5]
        assert len(store.tables['recipes']) == 130

    @pytest.mark.asyncio
    async def test_budget_divided_by_indices_and_item_size(self, store, sleep):
        """Super-batch size is capacity / indices / average item size in KB."""
        requests = put_requests(20, body='x' * 2 * 1024)

        result = await batch_write_sequential(
            store,
            {'recipes': requests},
            write_config(wcu_per_second=40, number_indices=2),
            sleep=sleep,
        )

        # 40 / 2 / ~2.06 KB floors to 9
        assert result.super_batches == 3
        assert [len(call['recipes']) for call in store.write_calls] == [9, 9, 2]

    @pytest.mark.asyncio
    async def test_tiny_budget_still_progresses(self, store, sleep):
        """A budget below one item per super-batch writes one item at a time."""
        result = await batch_write_sequential(
            store,
            {'recipes': put_requests(3)},
            write_config(wcu_per_second=0.5, cooldown_seconds=0),
            sleep=sleep,
        )
        assert result.super_batches == 3
        assert len(store.tables['recipes']) == 3

    @pytest.mark.asyncio
    async def test_residual_raised_when_retries_exhausted(self, sleep):
        """Work left after the last retry round is raised with the residual."""
        store = FakeDocumentStore(script=[keep_all] * 3)
        requests = put_requests(5)
        config = write_config(unprocessed_back_off=no_jitter_back_off(num_of_attempts=2))

        with pytest.raises(UnprocessedResidualError) as exc_info:
            await batch_write_sequential(store, {'recipes': requests}, config, sleep=sleep)

        assert exc_info.value.residual == {'recipes': requests}
        assert exc_info.value.rounds == 2
        assert exc_info.value.unprocessed_count == 5
        assert len(store.write_calls) == 3

    @pytest.mark.asyncio
    async def test_consumed_capacity_summed_across_rounds(self, sleep):
        """Capacity reported by the first round and the retry round is totalled."""
        store = FakeDocumentStore(script=[keep_first_half], report_capacity=True)

        result = await batch_write_sequential(
            store, {'recipes': put_requests(10)}, write_config(), sleep=sleep
        )

        assert result.retry_rounds == 1
        assert result.consumed_capacity_units == 10.0

    @pytest.mark.asyncio
    async def test_non_retryable_error_in_retry_round_propagates(self, sleep):
        """A validation error while retrying is raised unchanged."""
        store = FakeDocumentStore(script=[keep_first_half, validation_error()])

        with pytest.raises(ClientError, match='ValidationException'):
            await batch_write_sequential(
                store, {'recipes': put_requests(10)}, write_config(), sleep=sleep
            )

    @pytest.mark.asyncio
    async def test_all_or_nothing_throttling_retried_by_round(self, sleep):
        """With all_or_nothing a throttled round keeps its residual for the next round."""
        store = FakeDocumentStore(script=[keep_first_half, throttling_error(), None])
        config = write_config(
            all_or_nothing=True, batch_back_off=no_jitter_back_off(num_of_attempts=1)
        )

        result = await batch_write_sequential(
            store, {'recipes': put_requests(10)}, config, sleep=sleep
        )

        assert result.retry_rounds == 2
        assert len(store.tables['recipes']) == 10

    @pytest.mark.asyncio
    async def test_callback_runs_for_every_micro_batch(self, store, sleep):
        """The callback runs once per successful micro-batch call."""
        callback = AsyncMock()
        await batch_write_sequential(
            store, {'recipes': put_requests(60)}, write_config(), callback=callback, sleep=sleep
        )
        assert callback.await_count == 3

    @pytest.mark.asyncio
    async def test_empty_workload(self, store, sleep):
        """An empty workload issues no call."""
        result = await batch_write_sequential(store, {}, write_config(), sleep=sleep)
        assert result.super_batches == 0
        assert store.write_calls == []


class TestBatchReadSequential:
    """Tests for batch_read_sequential."""

    @pytest.mark.asyncio
    async def test_processes_every_super_batch(self, store, sleep):
        """Every super-batch is read, not only the first one.

        Earlier versions returned after the first super-batch of a read
        workload. All super-batches are processed now.
        """
        store.seed('recipes', read_keys(250))

        result = await batch_read_sequential(
            store, {'recipes': read_keys(250)}, read_config(rcu_per_second=100), sleep=sleep
        )

        assert result.super_batches == 3
        assert len(result.items) == 250
        assert sleep.calls == [1.0, 1.0]

    @pytest.mark.asyncio
    async def test_items_kept_in_super_batch_order(self, store, sleep):
        """Items are concatenated in super-batch order."""
        keys = read_keys(6)
        store.seed('recipes', keys)

        result = await batch_read_sequential(
            store,
            {'recipes': keys},
            read_config(rcu_per_second=2, batch_size=1),
            sleep=sleep,
        )

        assert result.items == keys

    @pytest.mark.asyncio
    async def test_unprocessed_keys_retried(self, sleep):
        """Keys the store declined are read in a retry round."""
        store = FakeDocumentStore(script=[keep_first_half])
        keys = read_keys(10)
        store.seed('recipes', keys)

        result = await batch_read_sequential(store, {'recipes': keys}, read_config(), sleep=sleep)

        assert result.retry_rounds == 1
        assert sorted(item['sk1'] for item in result.items) == [key['sk1'] for key in keys]

    @pytest.mark.asyncio
    async def test_residual_raised_when_retries_exhausted(self, sleep):
        """Keys left after the last retry round are raised instead of partial items."""
        store = FakeDocumentStore(script=[keep_first_half, keep_all, keep_all])
        keys = read_keys(10)
        store.seed('recipes', keys)
        config = read_config(unprocessed_back_off=no_jitter_back_off(num_of_attempts=2))

        with pytest.raises(UnprocessedResidualError) as exc_info:
            await batch_read_sequential(store, {'recipes': keys}, config, sleep=sleep)

        assert exc_info.value.residual == {'recipes': keys[:5]}
        assert exc_info.value.rounds == 2
        assert exc_info.value.unprocessed_count == 5
        assert len(store.read_calls) == 3


class TestBatchReadParallel:
    """Tests for batch_read_parallel."""

    @pytest.mark.asyncio
    async def test_reads_all_keys_in_one_round(self, store, sleep):
        """All micro-batches run in one parallel round without cooldown."""
        store.seed('recipes', read_keys(250))

        result = await batch_read_parallel(store, {'recipes': read_keys(250)}, sleep=sleep)

        assert len(store.read_calls) == 3
        assert len(result.items) == 250
        assert sleep.calls == []

    @pytest.mark.asyncio
    async def test_empty_workload(self, store, sleep):
        """Nothing to read returns an empty result without calls."""
        result = await batch_read_parallel(store, {'recipes': []}, sleep=sleep)
        assert result.items == []
        assert store.read_calls == []


class TestUnprocessedRetryLoop:
    """Tests for the retry state machine."""

    @pytest.mark.asyncio
    async def test_done_after_success(self, sleep):
        """A round without leftovers ends in DONE."""
        execute = AsyncMock(return_value=[BatchOutcome(items=[{'id': 1}])])
        loop = UnprocessedRetryLoop('fn', execute, no_jitter_back_off(), sleep=sleep)

        assert loop.state == RetryState.PENDING
        assert await loop.run({'t': [1]}) == [{'id': 1}]
        assert loop.state == RetryState.DONE
        assert loop.rounds == 1

    @pytest.mark.asyncio
    async def test_exhausted_state(self, sleep):
        """Running out of rounds ends in EXHAUSTED."""
        execute = AsyncMock(return_value=[BatchOutcome(unprocessed={'t': [1]})])
        loop = UnprocessedRetryLoop(
            'fn', execute, no_jitter_back_off(num_of_attempts=3), sleep=sleep
        )

        with pytest.raises(UnprocessedResidualError):
            await loop.run({'t': [1]})

        assert loop.state == RetryState.EXHAUSTED
        assert loop.rounds == 3
        assert execute.await_count == 3

    @pytest.mark.asyncio
    async def test_retryable_error_chained(self, sleep):
        """The residual error is chained to the last retryable error."""
        error = throttling_error()
        execute = AsyncMock(side_effect=error)
        loop = UnprocessedRetryLoop(
            'fn', execute, no_jitter_back_off(num_of_attempts=2), sleep=sleep
        )

        with pytest.raises(UnprocessedResidualError) as exc_info:
            await loop.run({'t': [1, 2]})

        assert exc_info.value.__cause__ is error
        assert exc_info.value.residual == {'t': [1, 2]}

    @pytest.mark.asyncio
    @patch('forge_dynamodb.load_balancer.logger')
    async def test_rounds_logged(self, mock_logger, sleep):
        """Each round logs the remaining work."""
        execute = AsyncMock(return_value=[BatchOutcome()])
        loop = UnprocessedRetryLoop('fn', execute, no_jitter_back_off(), sleep=sleep)

        await loop.run({'t': [1, 2]})

        mock_logger.info.assert_called_once_with(
            '[fn] Processing unprocessed: round 1 of 5, 2 requests'
        )
        mock_logger.debug.assert_called_once()
