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

"""Request and result models for DynamoDB batch operations."""

from dataclasses import dataclass, field
from forge_dynamodb.consts import ERROR_UNKNOWN_WRITE_REQUEST
from forge_dynamodb.errors import MalformedWorkloadError
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Union


@dataclass(frozen=True)
class PutRequest:
    """Put a whole item into a table."""

    item: Mapping[str, Any]

    def __post_init__(self):
        """Freeze the item mapping."""
        object.__setattr__(self, 'item', MappingProxyType(dict(self.item)))

    def to_dynamodb(self) -> Dict[str, Any]:
        """Convert to the BatchWriteItem request shape."""
        return {'PutRequest': {'Item': dict(self.item)}}


@dataclass(frozen=True)
class DeleteRequest:
    """Delete the item identified by its key."""

    key: Mapping[str, Any]

    def __post_init__(self):
        """Freeze the key mapping."""
        object.__setattr__(self, 'key', MappingProxyType(dict(self.key)))

    def to_dynamodb(self) -> Dict[str, Any]:
        """Convert to the BatchWriteItem request shape."""
        return {'DeleteRequest': {'Key': dict(self.key)}}


WriteRequest = Union[PutRequest, DeleteRequest]

# table name -> ordered write requests for that table
BatchWriteMap = Dict[str, List[WriteRequest]]

ReadKey = Dict[str, Any]

# table name -> keys to fetch from that table
BatchReadMap = Dict[str, List[ReadKey]]


def write_request_from_dynamodb(request: Mapping[str, Any]) -> WriteRequest:
    """Parse a BatchWriteItem request shape into a write request.

    Args:
        request: Mapping with exactly one of 'PutRequest' or 'DeleteRequest'

    Returns:
        WriteRequest: The parsed request

    Raises:
        MalformedWorkloadError: If the mapping has any other shape
    """
    put = request.get('PutRequest')
    delete = request.get('DeleteRequest')
    if put is not None and delete is None and 'Item' in put:
        return PutRequest(item=put['Item'])
    if delete is not None and put is None and 'Key' in delete:
        return DeleteRequest(key=delete['Key'])
    raise MalformedWorkloadError(f'{ERROR_UNKNOWN_WRITE_REQUEST}: {dict(request)}')


@dataclass
class BatchOutcome:
    """Result of a single batch call.

    Everything that is not listed in ``unprocessed`` was processed.
    """

    items: List[Dict[str, Any]] = field(default_factory=list)
    unprocessed: Dict[str, List[Any]] = field(default_factory=dict)
    consumed_capacity: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def has_unprocessed(self) -> bool:
        """Whether the backend declined any request of this batch."""
        return any(self.unprocessed.values())


@dataclass
class FoldedOutcome:
    """Merged outcomes of one round of parallel batch calls."""

    items: List[Dict[str, Any]] = field(default_factory=list)
    unprocessed: Dict[str, List[Any]] = field(default_factory=dict)
    consumed_capacity_units: float = 0.0


@dataclass
class BatchRunResult:
    """Settled result of a top-level batch operation."""

    items: List[Dict[str, Any]] = field(default_factory=list)
    retry_rounds: int = 0
    super_batches: int = 0
    requests_submitted: int = 0
    consumed_capacity_units: float = 0.0


@dataclass
class PageResult:
    """Items gathered from a paginated query or scan."""

    items: List[Dict[str, Any]] = field(default_factory=list)
    last_evaluated_key: Optional[Dict[str, Any]] = None
