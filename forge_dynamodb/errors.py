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

"""Exceptions and error classification for DynamoDB batch operations."""

from botocore.exceptions import ClientError
from forge_dynamodb.consts import THROTTLING_ERROR_NAMES
from typing import Any, Dict, List


class ForgeDynamoDBError(Exception):
    """Base class for errors raised by forge-dynamodb."""


class UnprocessedResidualError(ForgeDynamoDBError):
    """Raised when retries are exhausted and requests are still unprocessed.

    The residual map has the same shape as the submitted workload and only
    contains the requests the backend never completed.
    """

    def __init__(self, function_name: str, residual: Dict[str, List[Any]], rounds: int = 0):
        """Initialize the error.

        Args:
            function_name: Name of the operation that gave up
            residual: Per-table requests that are still unprocessed
            rounds: Number of retry rounds that were executed
        """
        self.function_name = function_name
        self.residual = residual
        self.rounds = rounds
        self.unprocessed_count = sum(len(requests) for requests in residual.values())
        super().__init__(
            f'[{function_name}] {self.unprocessed_count} requests still unprocessed '
            f'after {rounds} retry rounds (tables: {", ".join(sorted(residual))})'
        )


class MalformedWorkloadError(ForgeDynamoDBError, ValueError):
    """Raised when a workload does not have the shape an operation requires."""


class NotFoundError(ForgeDynamoDBError):
    """Raised by get_item when no item is found and the caller asked to fail."""


def error_name(error: BaseException) -> str:
    """Get the discriminating name of a backend error.

    botocore client errors carry the service error code in the response,
    other errors may expose a ``name`` attribute; the class name is the fallback.

    Args:
        error: The raised error

    Returns:
        str: Error name used to classify the error
    """
    if isinstance(error, ClientError):
        code = error.response.get('Error', {}).get('Code')
        if code:
            return code
    name = getattr(error, 'name', None)
    if isinstance(name, str) and name:
        return name
    return type(error).__name__


def is_throttling_error(error: BaseException) -> bool:
    """Check whether an error signals exceeded throughput and may be retried.

    Args:
        error: The raised error

    Returns:
        bool: True for throttling-class errors
    """
    return error_name(error) in THROTTLING_ERROR_NAMES
