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

"""Async document store over the boto3 DynamoDB client.

Callers work with native Python values. Values are marshalled to DynamoDB
attribute values on the way in and unmarshalled on the way out.
"""

import asyncio
from abc import ABC, abstractmethod
from boto3.dynamodb.types import TypeDeserializer, TypeSerializer
from decimal import Decimal
from forge_dynamodb.models import (
    BatchOutcome,
    BatchReadMap,
    BatchWriteMap,
    PutRequest,
    WriteRequest,
    write_request_from_dynamodb,
)
from typing import Any, Dict, List, Mapping, Optional


_serializer = TypeSerializer()
_deserializer = TypeDeserializer()


def _prepare_value(value: Any) -> Any:
    """Convert floats, which boto3 rejects, to Decimal recursively."""
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, Mapping):
        return {k: _prepare_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_prepare_value(v) for v in value]
    if isinstance(value, (set, frozenset)):
        return {_prepare_value(v) for v in value}
    return value


def marshall(item: Mapping[str, Any]) -> Dict[str, Dict[str, Any]]:
    """Convert a native item into a DynamoDB attribute value map."""
    return {key: _serializer.serialize(_prepare_value(value)) for key, value in item.items()}


def unmarshall(image: Mapping[str, Dict[str, Any]]) -> Dict[str, Any]:
    """Convert a DynamoDB attribute value map into a native item."""
    return {key: _deserializer.deserialize(value) for key, value in image.items()}


def _marshall_params(params: Mapping[str, Any]) -> Dict[str, Any]:
    marshalled = dict(params)
    for name in ('Key', 'ExclusiveStartKey', 'ExpressionAttributeValues', 'Item'):
        if marshalled.get(name) is not None:
            marshalled[name] = marshall(marshalled[name])
    return {k: v for k, v in marshalled.items() if v is not None}


def _marshall_write_request(request: WriteRequest) -> Dict[str, Any]:
    if isinstance(request, PutRequest):
        return {'PutRequest': {'Item': marshall(request.item)}}
    return {'DeleteRequest': {'Key': marshall(request.key)}}


def _unmarshall_write_request(request: Mapping[str, Any]) -> WriteRequest:
    native = {
        kind: {attribute: unmarshall(value) for attribute, value in body.items()}
        for kind, body in request.items()
    }
    return write_request_from_dynamodb(native)


def _page(response: Mapping[str, Any]) -> Dict[str, Any]:
    last_evaluated_key = response.get('LastEvaluatedKey')
    return {
        'Items': [unmarshall(item) for item in response.get('Items', [])],
        'LastEvaluatedKey': unmarshall(last_evaluated_key) if last_evaluated_key else None,
    }


class AbstractDocumentStore(ABC):
    """Operations the batch layer needs from a document store."""

    @abstractmethod
    async def batch_write(self, request_items: BatchWriteMap) -> BatchOutcome:
        """Write one batch and report the requests the store did not process."""

    @abstractmethod
    async def batch_read(self, request_items: BatchReadMap) -> BatchOutcome:
        """Read one batch of keys and report the keys the store did not process."""

    @abstractmethod
    async def query(self, params: Dict[str, Any]) -> Dict[str, Any]:
        """Query one page. Returns 'Items' and 'LastEvaluatedKey'."""

    @abstractmethod
    async def scan(self, params: Dict[str, Any]) -> Dict[str, Any]:
        """Scan one page. Returns 'Items' and 'LastEvaluatedKey'."""


class DynamoDBDocumentClient(AbstractDocumentStore):
    """Document store backed by a boto3 DynamoDB client."""

    def __init__(self, client: Any):
        """Initialize the document client.

        Args:
            client: boto3 DynamoDB client, shared read-only across calls
        """
        self.client = client

    async def _call(self, operation_name: str, **kwargs) -> Dict[str, Any]:
        operation = getattr(self.client, operation_name)
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, lambda: operation(**kwargs))

    async def batch_write(self, request_items: BatchWriteMap) -> BatchOutcome:
        """Execute a BatchWriteItem call.

        Args:
            request_items: Map from table name to at most 25 write requests

        Returns:
            BatchOutcome: Unprocessed requests parsed back into write requests
        """
        wire_items = {
            table: [_marshall_write_request(request) for request in requests]
            for table, requests in request_items.items()
        }
        response = await self._call(
            'batch_write_item', RequestItems=wire_items, ReturnConsumedCapacity='INDEXES'
        )

        unprocessed = {}
        for table, requests in (response.get('UnprocessedItems') or {}).items():
            parsed = [_unmarshall_write_request(request) for request in requests or []]
            if parsed:
                unprocessed[table] = parsed

        return BatchOutcome(
            unprocessed=unprocessed,
            consumed_capacity=response.get('ConsumedCapacity', []),
        )

    async def batch_read(self, request_items: BatchReadMap) -> BatchOutcome:
        """Execute a BatchGetItem call.

        Args:
            request_items: Map from table name to at most 100 keys

        Returns:
            BatchOutcome: Returned items of all tables and the unprocessed keys
        """
        wire_items = {
            table: {'Keys': [marshall(key) for key in keys]}
            for table, keys in request_items.items()
        }
        response = await self._call(
            'batch_get_item', RequestItems=wire_items, ReturnConsumedCapacity='INDEXES'
        )

        items: List[Dict[str, Any]] = []
        for table_items in (response.get('Responses') or {}).values():
            items.extend(unmarshall(item) for item in table_items)

        unprocessed = {}
        for table, keys_and_attributes in (response.get('UnprocessedKeys') or {}).items():
            keys = [unmarshall(key) for key in keys_and_attributes.get('Keys') or []]
            if keys:
                unprocessed[table] = keys

        return BatchOutcome(
            items=items,
            unprocessed=unprocessed,
            consumed_capacity=response.get('ConsumedCapacity', []),
        )

    async def query(self, params: Dict[str, Any]) -> Dict[str, Any]:
        """Execute one Query call with native expression values."""
        return _page(await self._call('query', **_marshall_params(params)))

    async def scan(self, params: Dict[str, Any]) -> Dict[str, Any]:
        """Execute one Scan call with native expression values."""
        return _page(await self._call('scan', **_marshall_params(params)))

    async def get_item(self, params: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Execute a GetItem call and return the native item, if any."""
        response = await self._call('get_item', **_marshall_params(params))
        item = response.get('Item')
        return unmarshall(item) if item else None

    async def put_item(self, params: Dict[str, Any]) -> Dict[str, Any]:
        """Execute a PutItem call and return the native previous attributes, if requested."""
        response = await self._call('put_item', **_marshall_params(params))
        return unmarshall(response.get('Attributes') or {})

    async def update_item(self, params: Dict[str, Any]) -> Dict[str, Any]:
        """Execute an UpdateItem call and return the native returned attributes."""
        response = await self._call('update_item', **_marshall_params(params))
        return unmarshall(response.get('Attributes') or {})

    async def delete_item(self, params: Dict[str, Any]) -> Dict[str, Any]:
        """Execute a DeleteItem call and return the native old attributes, if requested."""
        response = await self._call('delete_item', **_marshall_params(params))
        return unmarshall(response.get('Attributes') or {})
