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

"""Single item operations and paginated reads over a document client."""

import asyncio
import re
from datetime import datetime, timezone
from forge_dynamodb.consts import ERROR_MISSING_PARTITION_PLACEHOLDER, PARTITION_PLACEHOLDER
from forge_dynamodb.document_client import AbstractDocumentStore, DynamoDBDocumentClient
from forge_dynamodb.errors import MalformedWorkloadError, NotFoundError
from forge_dynamodb.models import PageResult
from forge_dynamodb.utils.aws_utils import default_registry, get_region
from forge_dynamodb.utils.expressions import (
    get_expression_attribute_names,
    get_projection_expression,
    get_update_operation,
)
from loguru import logger
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional


Item = Dict[str, Any]
PageCallback = Callable[[List[Item]], Awaitable[None]]
ItemFilter = Callable[[List[Item]], Awaitable[List[Item]]]
PageFetch = Callable[[Dict[str, Any]], Awaitable[Dict[str, Any]]]


def utc_timestamp() -> str:
    """Current UTC time as an ISO 8601 string with millisecond precision."""
    return datetime.now(timezone.utc).isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def _resolve(store: Optional[AbstractDocumentStore]) -> Any:
    return store if store is not None else default_registry.get_document_client()


def _with_projection(params: Mapping[str, Any]) -> Dict[str, Any]:
    """Turn a ``ProjectionExpression`` given as a list into placeholders and names."""
    request = dict(params)
    projection = request.get('ProjectionExpression')
    if isinstance(projection, (list, tuple)):
        request['ProjectionExpression'] = get_projection_expression(list(projection))
        request['ExpressionAttributeNames'] = get_expression_attribute_names(
            list(projection), request.get('ExpressionAttributeNames')
        )
    return request


async def put_item(
    table_name: str,
    item: Mapping[str, Any],
    *,
    options: Optional[Mapping[str, Any]] = None,
    timestamps: bool = False,
    store: Optional[DynamoDBDocumentClient] = None,
) -> Item:
    """Put one item.

    Args:
        table_name: Target table
        item: Item to write
        options: Additional PutItem parameters
        timestamps: Add createdAt and updatedAt unless the item sets them
        store: Document client, defaults to the shared client of the default account

    Returns:
        The attributes returned by DynamoDB, empty unless ReturnValues was requested
    """
    if timestamps:
        now = utc_timestamp()
        item = {'createdAt': now, 'updatedAt': now, **item}
    return await _resolve(store).put_item(
        {'TableName': table_name, 'Item': dict(item), **(options or {})}
    )


async def get_item(
    table_name: str,
    key: Mapping[str, Any],
    *,
    projection: Optional[List[str]] = None,
    options: Optional[Mapping[str, Any]] = None,
    fail_if_item_not_found: bool = True,
    store: Optional[DynamoDBDocumentClient] = None,
) -> Optional[Item]:
    """Get one item by key.

    Args:
        table_name: Source table
        key: Key of the item
        projection: Attribute names to return, all attributes when omitted
        options: Additional GetItem parameters
        fail_if_item_not_found: Raise instead of returning None for a missing item
        store: Document client, defaults to the shared client of the default account

    Returns:
        The item, or None if it does not exist and ``fail_if_item_not_found`` is False

    Raises:
        NotFoundError: If the item does not exist and ``fail_if_item_not_found`` is True
    """
    options = dict(options or {})
    params = {
        'TableName': table_name,
        'Key': dict(key),
        **options,
        'ProjectionExpression': get_projection_expression(projection),
        'ExpressionAttributeNames': get_expression_attribute_names(
            projection, options.get('ExpressionAttributeNames')
        ),
    }
    item = await _resolve(store).get_item(params)
    if item is None and fail_if_item_not_found:
        raise NotFoundError(f'[get_item] No Item found for key: {dict(key)}!')
    return item


async def delete_item(
    table_name: str,
    key: Mapping[str, Any],
    *,
    return_item: bool = False,
    store: Optional[DynamoDBDocumentClient] = None,
) -> Item:
    """Delete one item by key.

    Args:
        table_name: Target table
        key: Key of the item
        return_item: Return the deleted item
        store: Document client, defaults to the shared client of the default account

    Returns:
        The deleted item if ``return_item``, otherwise an empty dict
    """
    return await _resolve(store).delete_item(
        {
            'TableName': table_name,
            'Key': dict(key),
            'ReturnValues': 'ALL_OLD' if return_item else 'NONE',
        }
    )


async def update_item(
    table_name: str,
    key: Mapping[str, Any],
    item: Optional[Mapping[str, Any]] = None,
    *,
    overrides: Optional[Mapping[str, Any]] = None,
    timestamps: bool = True,
    request_origin: bool = False,
    nested: bool = False,
    store: Optional[DynamoDBDocumentClient] = None,
) -> Item:
    """Update the attributes of one item with a SET expression.

    ``createdAt`` is only written when the stored item has none.

    Args:
        table_name: Target table
        key: Key of the item
        item: Attributes to set
        overrides: UpdateItem parameters merged over the defaults
        timestamps: Set createdAt and updatedAt to the current UTC time
        request_origin: Set requestOrigin to the current region
        nested: Update map attributes leaf by leaf
        store: Document client, defaults to the shared client of the default account

    Returns:
        The key merged with the updated attributes
    """
    params: Dict[str, Any] = {
        'TableName': table_name,
        'Key': dict(key),
        'ExpressionAttributeValues': {},
        'ExpressionAttributeNames': {},
        'UpdateExpression': '',
        'ReturnValues': 'UPDATED_NEW',
        **(overrides or {}),
    }

    if item:
        update = dict(item)
        if request_origin:
            update['requestOrigin'] = get_region()
        if timestamps:
            now = utc_timestamp()
            update['createdAt'] = now
            update['updatedAt'] = now
        params = get_update_operation(update, key, params, nested)

    # DynamoDB rejects empty expression parameters
    params = {name: value for name, value in params.items() if value not in ('', {})}
    attributes = await _resolve(store).update_item(params)
    return {**key, **attributes}


async def _read_all(
    function_name: str,
    fetch: PageFetch,
    params: Mapping[str, Any],
    callback: Optional[PageCallback],
    filter_items: Optional[ItemFilter],
) -> PageResult:
    request = _with_projection(params)
    max_limit = request.pop('MaxLimit', None)
    limit_from_max = max_limit is not None and 'Limit' not in request
    if limit_from_max:
        request['Limit'] = max_limit

    items: List[Item] = []
    pages = 0
    while True:
        page = await fetch(request)
        pages += 1
        page_items = page.get('Items') or []
        if callback is not None:
            await callback(page_items)
        if filter_items is not None:
            page_items = await filter_items(page_items)
        items.extend(page_items)

        last_evaluated_key = page.get('LastEvaluatedKey')
        if max_limit is not None and len(items) >= max_limit:
            break
        if not last_evaluated_key:
            break

        request = {**request, 'ExclusiveStartKey': last_evaluated_key}
        if limit_from_max:
            request['Limit'] = max_limit - len(items)

    logger.debug(f'[{function_name}] Read {len(items)} items in {pages} pages')
    return PageResult(items=items, last_evaluated_key=last_evaluated_key)


async def scan_all(
    params: Mapping[str, Any],
    *,
    callback: Optional[PageCallback] = None,
    filter_items: Optional[ItemFilter] = None,
    store: Optional[AbstractDocumentStore] = None,
) -> PageResult:
    """Scan a table and follow pagination until all items were read.

    Args:
        params: Scan parameters. ``MaxLimit`` stops reading once that many
            items were gathered, ``ProjectionExpression`` may be a list of names
        callback: Awaited with the items of every page
        filter_items: Applied to every page before its items are kept
        store: Document store, defaults to the shared client of the default account

    Returns:
        PageResult: All gathered items and the key to resume from, if any
    """
    return await _read_all('scan_all', _resolve(store).scan, params, callback, filter_items)


async def query_all(
    params: Mapping[str, Any],
    *,
    callback: Optional[PageCallback] = None,
    filter_items: Optional[ItemFilter] = None,
    store: Optional[AbstractDocumentStore] = None,
) -> PageResult:
    """Query a table and follow pagination until all items were read.

    Accepts the same options as scan_all.
    """
    return await _read_all('query_all', _resolve(store).query, params, callback, filter_items)


def _uses_value(expression: str, name: str) -> bool:
    """Whether ``expression`` references the value placeholder ``name`` as a whole token."""
    return re.search(rf'{re.escape(name)}(?![A-Za-z0-9_])', expression) is not None


async def query_all_partitions(
    params: Mapping[str, Any],
    number_of_partitions: int,
    *,
    callback: Optional[PageCallback] = None,
    filter_items: Optional[ItemFilter] = None,
    store: Optional[AbstractDocumentStore] = None,
) -> List[Item]:
    """Query every partition of a write-sharded key concurrently.

    One expression attribute value used in the key condition must contain
    ``%part%``. Its first occurrence is replaced by each partition id from 0 to
    ``number_of_partitions`` inclusive.

    Args:
        params: Query parameters
        number_of_partitions: Highest partition id
        callback: Awaited with the items of every page
        filter_items: Applied to every page before its items are kept
        store: Document store, defaults to the shared client of the default account

    Returns:
        Items of all partitions, in partition order

    Raises:
        MalformedWorkloadError: If no value holds the placeholder, the placeholder
            value is not used in the key condition or the partition count is negative
    """
    if number_of_partitions < 0:
        raise MalformedWorkloadError(
            f'number_of_partitions must not be negative, got {number_of_partitions}'
        )

    values = params.get('ExpressionAttributeValues') or {}
    partitioned = next(
        (
            (name, value)
            for name, value in values.items()
            if isinstance(value, str) and PARTITION_PLACEHOLDER in value
        ),
        None,
    )
    if partitioned is None or not _uses_value(
        params.get('KeyConditionExpression') or '', partitioned[0]
    ):
        raise MalformedWorkloadError(ERROR_MISSING_PARTITION_PLACEHOLDER)

    name, template = partitioned
    store = _resolve(store)
    pages = await asyncio.gather(
        *(
            query_all(
                {
                    **params,
                    'ExpressionAttributeValues': {
                        **values,
                        name: template.replace(PARTITION_PLACEHOLDER, str(partition), 1),
                    },
                },
                callback=callback,
                filter_items=filter_items,
                store=store,
            )
            for partition in range(number_of_partitions + 1)
        )
    )
    return [item for page in pages for item in page.items]
