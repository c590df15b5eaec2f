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

"""Shared fixtures: an in-memory document store with scripted failures."""

import pytest
from botocore.exceptions import ClientError
from collections import deque
from forge_dynamodb.document_client import AbstractDocumentStore
from forge_dynamodb.models import (
    BackOffConfig,
    BatchOutcome,
    DeleteRequest,
    Jitter,
    PutRequest,
)
from typing import Any, Dict, List, Optional


KEY_ATTRIBUTES = ('pk1', 'sk1')


def throttling_error(
    code: str = 'ProvisionedThroughputExceededException', operation: str = 'BatchWriteItem'
) -> ClientError:
    """Build a botocore error as raised for exceeded throughput."""
    return ClientError({'Error': {'Code': code, 'Message': 'Rate exceeded'}}, operation)


def validation_error(operation: str = 'BatchWriteItem') -> ClientError:
    """Build a botocore error that must not be retried."""
    return ClientError(
        {'Error': {'Code': 'ValidationException', 'Message': 'Invalid request'}}, operation
    )


def keep_first_half(request_map: Dict[str, List[Any]]) -> Dict[str, List[Any]]:
    """Script entry leaving the first half of every table unprocessed."""
    return {
        table: requests[: len(requests) // 2]
        for table, requests in request_map.items()
        if len(requests) // 2
    }


def keep_all(request_map: Dict[str, List[Any]]) -> Dict[str, List[Any]]:
    """Script entry leaving the whole batch unprocessed."""
    return {table: list(requests) for table, requests in request_map.items()}


def put_requests(count: int, **attributes) -> List[PutRequest]:
    """Build ``count`` put requests with distinct keys."""
    return [
        PutRequest({'pk1': 'recipe', 'sk1': f'{index:05d}', **attributes})
        for index in range(count)
    ]


def read_keys(count: int) -> List[Dict[str, str]]:
    """Build ``count`` distinct recipe keys."""
    return [{'pk1': 'recipe', 'sk1': f'{index:05d}'} for index in range(count)]


def no_jitter_back_off(**kwargs) -> BackOffConfig:
    """Backoff with deterministic delays."""
    return BackOffConfig(jitter=Jitter.NONE, **kwargs)


class FakeDocumentStore(AbstractDocumentStore):
    """In-memory document store.

    Batch calls consume one script entry each, in call order: None processes
    the whole batch, an exception is raised, and a callable maps the batch to
    the requests left unprocessed. Once the script is empty every batch is
    processed. Query and scan return the scripted pages in order. With
    ``report_capacity`` every batch reports one capacity unit per processed request.
    """

    def __init__(
        self,
        script: Optional[List[Any]] = None,
        pages: Optional[List[Dict]] = None,
        report_capacity: bool = False,
    ):
        """Initialize the store with an optional batch script and page script."""
        self.script = deque(script or [])
        self.report_capacity = report_capacity
        self.pages = deque(pages or [])
        self.tables: Dict[str, Dict[tuple, Dict[str, Any]]] = {}
        self.write_calls: List[Dict[str, List[Any]]] = []
        self.read_calls: List[Dict[str, List[Any]]] = []
        self.query_calls: List[Dict[str, Any]] = []
        self.scan_calls: List[Dict[str, Any]] = []

    @staticmethod
    def _key(attributes: Dict[str, Any]) -> tuple:
        return tuple(attributes.get(name) for name in KEY_ATTRIBUTES)

    def seed(self, table_name: str, items: List[Dict[str, Any]]) -> None:
        """Store items without going through a batch call."""
        table = self.tables.setdefault(table_name, {})
        for item in items:
            table[self._key(item)] = dict(item)

    def _next_unprocessed(self, request_map: Dict[str, List[Any]]) -> Dict[str, List[Any]]:
        entry = self.script.popleft() if self.script else None
        if isinstance(entry, BaseException):
            raise entry
        if entry is None:
            return {}
        return entry(request_map)

    def _consumed(self, request_items, unprocessed) -> List[Dict[str, Any]]:
        if not self.report_capacity:
            return []
        return [
            {
                'TableName': table,
                'CapacityUnits': float(len(requests) - len(unprocessed.get(table, []))),
            }
            for table, requests in request_items.items()
        ]

    @staticmethod
    def _without(requests: List[Any], unprocessed: List[Any]) -> List[Any]:
        remaining = list(unprocessed)
        processed = []
        for request in requests:
            if request in remaining:
                remaining.remove(request)
            else:
                processed.append(request)
        return processed

    async def batch_write(self, request_items):
        """Apply the processed part of a write batch."""
        self.write_calls.append({table: list(reqs) for table, reqs in request_items.items()})
        unprocessed = self._next_unprocessed(request_items)
        for table_name, requests in request_items.items():
            table = self.tables.setdefault(table_name, {})
            for request in self._without(requests, unprocessed.get(table_name, [])):
                if isinstance(request, PutRequest):
                    table[self._key(request.item)] = dict(request.item)
                elif isinstance(request, DeleteRequest):
                    table.pop(self._key(request.key), None)
        return BatchOutcome(
            unprocessed=unprocessed, consumed_capacity=self._consumed(request_items, unprocessed)
        )

    async def batch_read(self, request_items):
        """Return the stored items for the processed part of a read batch."""
        self.read_calls.append({table: list(keys) for table, keys in request_items.items()})
        unprocessed = self._next_unprocessed(request_items)
        items = []
        for table_name, keys in request_items.items():
            table = self.tables.get(table_name, {})
            for key in self._without(keys, unprocessed.get(table_name, [])):
                item = table.get(self._key(key))
                if item is not None:
                    items.append(dict(item))
        return BatchOutcome(
            items=items,
            unprocessed=unprocessed,
            consumed_capacity=self._consumed(request_items, unprocessed),
        )

    def _next_page(self) -> Dict[str, Any]:
        if not self.pages:
            return {'Items': [], 'LastEvaluatedKey': None}
        return self.pages.popleft()

    async def query(self, params):
        """Return the next scripted page."""
        self.query_calls.append(dict(params))
        return self._next_page()

    async def scan(self, params):
        """Return the next scripted page."""
        self.scan_calls.append(dict(params))
        return self._next_page()


class RecordingSleep:
    """Sleep replacement recording the requested delays without waiting."""

    def __init__(self):
        """Initialize with no recorded delays."""
        self.calls: List[float] = []

    async def __call__(self, seconds: float) -> None:
        """Record the delay."""
        self.calls.append(seconds)


@pytest.fixture
def store():
    """Empty in-memory document store."""
    return FakeDocumentStore()


@pytest.fixture
def sleep():
    """Sleep replacement that never waits."""
    return RecordingSleep()
