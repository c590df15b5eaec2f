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

"""Load balancing and backoff configuration from environment variables."""

import math
import os
from forge_dynamodb.consts import (
    DEFAULT_BACKOFF_ATTEMPTS,
    DEFAULT_BATCH_STARTING_DELAY_MS,
    DEFAULT_COOLDOWN_SECONDS,
    DEFAULT_NUMBER_INDICES,
    DEFAULT_RCU_PER_SECOND,
    DEFAULT_UNPROCESSED_STARTING_DELAY_MS,
    DEFAULT_WCU_PER_SECOND,
    FORGE_DYNAMODB_BACKOFF_ATTEMPTS_ENV,
    FORGE_DYNAMODB_BACKOFF_JITTER_ENV,
    FORGE_DYNAMODB_BACKOFF_STARTING_DELAY_MS_ENV,
    FORGE_DYNAMODB_COOLDOWN_SECONDS_ENV,
    FORGE_DYNAMODB_NUMBER_INDICES_ENV,
    FORGE_DYNAMODB_RCU_PER_SECOND_ENV,
    FORGE_DYNAMODB_RECIPES_TABLE_ENV,
    FORGE_DYNAMODB_WCU_PER_SECOND_ENV,
    RECIPES_TABLE_NAME,
)
from forge_dynamodb.models import BackOffConfig, Jitter, ReadLoadConfig, WriteLoadConfig
from loguru import logger
from typing import Union


Number = Union[int, float]


def _get_positive_number(env_name: str, default: Number, cast=float, allow_zero=False) -> Number:
    """Read a positive number from the environment, falling back to ``default``.

    Args:
        env_name: Name of the environment variable
        default: Value used when the variable is unset or invalid
        cast: Conversion applied to the raw value
        allow_zero: Accept zero as a valid value

    Returns:
        The configured or the default value
    """
    raw_value = os.environ.get(env_name)
    if raw_value is None or not raw_value.strip():
        return default

    try:
        value = cast(raw_value.strip())
    except ValueError:
        logger.warning(f'Invalid {env_name} value in environment. Using default: {default}')
        return default

    if math.isnan(value) or math.isinf(value) or value < 0 or (value == 0 and not allow_zero):
        logger.warning(f'Invalid {env_name} value: {value}. Using default: {default}')
        return default
    return value


def get_wcu_per_second() -> float:
    """Get the write capacity units available per second."""
    return _get_positive_number(FORGE_DYNAMODB_WCU_PER_SECOND_ENV, DEFAULT_WCU_PER_SECOND)


def get_rcu_per_second() -> float:
    """Get the read capacity units available per second."""
    return _get_positive_number(FORGE_DYNAMODB_RCU_PER_SECOND_ENV, DEFAULT_RCU_PER_SECOND)


def get_number_indices() -> int:
    """Get the number of indices each write also consumes capacity on."""
    return _get_positive_number(
        FORGE_DYNAMODB_NUMBER_INDICES_ENV, DEFAULT_NUMBER_INDICES, cast=int
    )


def get_cooldown_seconds() -> float:
    """Get the pause between two super-batches, in seconds."""
    return _get_positive_number(
        FORGE_DYNAMODB_COOLDOWN_SECONDS_ENV, DEFAULT_COOLDOWN_SECONDS, allow_zero=True
    )


def get_jitter() -> Jitter:
    """Get the jitter strategy applied to backoff delays.

    Returns:
        Jitter: Configured strategy, ``Jitter.FULL`` when unset or invalid
    """
    raw_value = os.environ.get(FORGE_DYNAMODB_BACKOFF_JITTER_ENV, Jitter.FULL.value)
    try:
        return Jitter(raw_value.strip().lower())
    except ValueError:
        logger.warning(
            f'Invalid {FORGE_DYNAMODB_BACKOFF_JITTER_ENV} value: {raw_value}. '
            f'Using default: {Jitter.FULL.value}'
        )
        return Jitter.FULL


def get_back_off_config(
    starting_delay: float = DEFAULT_UNPROCESSED_STARTING_DELAY_MS,
) -> BackOffConfig:
    """Get backoff settings from environment variables.

    Args:
        starting_delay: Starting delay in milliseconds used when the
            environment does not configure one

    Returns:
        BackOffConfig: Validated backoff settings
    """
    return BackOffConfig(
        num_of_attempts=_get_positive_number(
            FORGE_DYNAMODB_BACKOFF_ATTEMPTS_ENV, DEFAULT_BACKOFF_ATTEMPTS, cast=int
        ),
        starting_delay=_get_positive_number(
            FORGE_DYNAMODB_BACKOFF_STARTING_DELAY_MS_ENV, starting_delay, allow_zero=True
        ),
        jitter=get_jitter(),
    )


def get_write_load_config() -> WriteLoadConfig:
    """Get the write load balancing configuration from environment variables.

    Returns:
        WriteLoadConfig: Configuration object with validated settings
    """
    return WriteLoadConfig(
        wcu_per_second=get_wcu_per_second(),
        number_indices=get_number_indices(),
        cooldown_seconds=get_cooldown_seconds(),
        batch_back_off=get_back_off_config(DEFAULT_BATCH_STARTING_DELAY_MS),
        unprocessed_back_off=get_back_off_config(),
    )


def get_read_load_config() -> ReadLoadConfig:
    """Get the read load balancing configuration from environment variables.

    Returns:
        ReadLoadConfig: Configuration object with validated settings
    """
    return ReadLoadConfig(
        rcu_per_second=get_rcu_per_second(),
        number_indices=get_number_indices(),
        cooldown_seconds=get_cooldown_seconds(),
        batch_back_off=get_back_off_config(DEFAULT_BATCH_STARTING_DELAY_MS),
        unprocessed_back_off=get_back_off_config(),
    )


def get_recipes_table_name() -> str:
    """Get the name of the recipes table.

    Returns:
        str: Configured table name, ``recipes`` when unset or blank
    """
    table_name = os.environ.get(FORGE_DYNAMODB_RECIPES_TABLE_ENV, RECIPES_TABLE_NAME)
    if not table_name.strip():
        logger.warning(
            f'{FORGE_DYNAMODB_RECIPES_TABLE_ENV} environment variable is empty or contains only '
            f'whitespace. Using default table name: {RECIPES_TABLE_NAME}'
        )
        return RECIPES_TABLE_NAME
    return table_name.strip()
