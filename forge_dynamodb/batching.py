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

"""Request batching and capacity estimation for DynamoDB batch operations."""

import json
import math
from forge_dynamodb.consts import BYTES_PER_KB, CAPACITY_UNIT_SIZE_KB
from forge_dynamodb.models import BatchReadMap, BatchWriteMap
from loguru import logger
from typing import Any, Dict, List, Sequence, TypeVar


T = TypeVar('T')


def chunk(sequence: Sequence[T], size: int) -> List[List[T]]:
    """Split a sequence into consecutive lists of at most ``size`` elements."""
    if size < 1:
        raise ValueError(f'size must be at least 1, got {size}')
    return [list(sequence[i : i + size]) for i in range(0, len(sequence), size)]


def normalize_batch_size(batch_size: float) -> int:
    """Floor a computed batch size and clamp it to at least one item.

    Batch sizes derived from capacity budgets are usually fractional. A
    budget smaller than one item still has to make progress.
    """
    if math.isnan(batch_size):
        return 1
    if math.isinf(batch_size):
        raise ValueError('batch size must be finite')
    return max(1, math.floor(batch_size))


def _request_batcher(
    requests: Dict[str, Sequence[Any]], batch_size: float
) -> List[Dict[str, List[Any]]]:
    size = normalize_batch_size(batch_size)
    batches: List[Dict[str, List[Any]]] = []
    for table, table_requests in requests.items():
        batches.extend({table: batch} for batch in chunk(list(table_requests), size))
    return batches


def write_item_request_batcher(
    write_requests: BatchWriteMap, batch_size: float
) -> List[BatchWriteMap]:
    """Split a write request map into batch sized request maps.

    Every emitted map holds the requests of exactly one table. Request order
    within a table is kept.

    Args:
        write_requests: Map from table name to write requests
        batch_size: Maximum number of requests per map, floored and clamped to >= 1

    Returns:
        List of batch write maps
    """
    try:
        return _request_batcher(write_requests, batch_size)
    except Exception as e:
        logger.error(f'Failed to batch write requests {write_requests}: {e}')
        raise


def read_item_request_batcher(
    read_requests: BatchReadMap, batch_size: float
) -> List[BatchReadMap]:
    """Split a read request map into batch sized request maps.

    Args:
        read_requests: Map from table name to keys
        batch_size: Maximum number of keys per map, floored and clamped to >= 1

    Returns:
        List of batch read maps
    """
    try:
        return _request_batcher(read_requests, batch_size)
    except Exception as e:
        logger.error(f'Failed to batch read requests {read_requests}: {e}')
        raise


def serialized_size_bytes(value: Any) -> int:
    """Size in bytes of the compact UTF-8 JSON serialization of ``value``."""
    serialized = json.dumps(value, separators=(',', ':'), ensure_ascii=False, default=str)
    return len(serialized.encode('utf-8'))


def average_item_size_kb(write_requests: BatchWriteMap) -> float:
    """Estimate the average item size of a write workload in KB.

    The size of each table's requests is divided by its request count, then
    averaged across tables. Capacity units are charged per started KB, so the
    result is never below one KB.

    Args:
        write_requests: Map from table name to write requests

    Returns:
        float: Average item size in KB, at least 1.0
    """
    table_averages = [
        serialized_size_bytes([request.to_dynamodb() for request in writes])
        / BYTES_PER_KB
        / len(writes)
        for writes in write_requests.values()
        if writes
    ]
    if not table_averages:
        return CAPACITY_UNIT_SIZE_KB

    average = sum(table_averages) / len(table_averages)
    return max(average, CAPACITY_UNIT_SIZE_KB)
