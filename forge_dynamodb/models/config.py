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

"""Pydantic configuration models for batching, load balancing and backoff."""

from abc import abstractmethod
from enum import Enum
from forge_dynamodb.consts import (
    DEFAULT_BACKOFF_ATTEMPTS,
    DEFAULT_BACKOFF_TIME_MULTIPLE,
    DEFAULT_BATCH_STARTING_DELAY_MS,
    DEFAULT_COOLDOWN_SECONDS,
    DEFAULT_NUMBER_INDICES,
    DEFAULT_RCU_PER_SECOND,
    DEFAULT_UNPROCESSED_STARTING_DELAY_MS,
    DEFAULT_WCU_PER_SECOND,
    MAX_BATCH_GET_ITEMS,
    MAX_BATCH_WRITE_ITEMS,
)
from forge_dynamodb.errors import is_throttling_error
from pydantic import BaseModel, ConfigDict, Field, PositiveFloat, PositiveInt
from typing import Any, Callable, Optional


class Jitter(str, Enum):
    """Named jitter strategies applied to backoff delays."""

    FULL = 'full'
    NONE = 'none'


class BackOffConfig(BaseModel):
    """Exponential backoff settings for a retried operation.

    Delays are expressed in milliseconds.
    """

    model_config = ConfigDict(frozen=True)

    num_of_attempts: PositiveInt = DEFAULT_BACKOFF_ATTEMPTS
    starting_delay: float = Field(default=DEFAULT_UNPROCESSED_STARTING_DELAY_MS, ge=0)
    time_multiple: float = Field(default=DEFAULT_BACKOFF_TIME_MULTIPLE, ge=1)
    max_delay: Optional[float] = Field(default=None, ge=0)
    jitter: Jitter = Jitter.FULL
    # Returns bool or an awaitable of bool; None retries every error
    error_condition: Optional[Callable[[BaseException], Any]] = is_throttling_error

    def scaled(self, factor: int) -> 'BackOffConfig':
        """Return a copy whose starting delay is multiplied by ``factor``."""
        return self.model_copy(update={'starting_delay': self.starting_delay * factor})


def _batch_back_off() -> BackOffConfig:
    return BackOffConfig(starting_delay=DEFAULT_BATCH_STARTING_DELAY_MS)


class LoadConfig(BaseModel):
    """Settings shared by the write and read load balancers."""

    model_config = ConfigDict(frozen=True)

    number_indices: PositiveInt = DEFAULT_NUMBER_INDICES
    cooldown_seconds: float = Field(default=DEFAULT_COOLDOWN_SECONDS, ge=0)
    batch_back_off: BackOffConfig = Field(default_factory=_batch_back_off)
    unprocessed_back_off: BackOffConfig = Field(default_factory=BackOffConfig)
    all_or_nothing: bool = False

    @property
    @abstractmethod
    def capacity_per_second(self) -> float:
        """Capacity units available per second."""


class WriteLoadConfig(LoadConfig):
    """Settings for load balanced batch writes."""

    batch_size: int = Field(default=MAX_BATCH_WRITE_ITEMS, ge=1, le=MAX_BATCH_WRITE_ITEMS)
    wcu_per_second: PositiveFloat = DEFAULT_WCU_PER_SECOND

    @property
    def capacity_per_second(self) -> float:
        """Write capacity units available per second."""
        return self.wcu_per_second


class ReadLoadConfig(LoadConfig):
    """Settings for load balanced batch reads."""

    batch_size: int = Field(default=MAX_BATCH_GET_ITEMS, ge=1, le=MAX_BATCH_GET_ITEMS)
    rcu_per_second: PositiveFloat = DEFAULT_RCU_PER_SECOND

    @property
    def capacity_per_second(self) -> float:
        """Read capacity units available per second."""
        return self.rcu_per_second
