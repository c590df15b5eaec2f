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

"""Defines constants used across the package."""

# https://docs.aws.amazon.com/amazondynamodb/latest/APIReference/API_BatchWriteItem.html
MAX_BATCH_WRITE_ITEMS = 25

# https://docs.aws.amazon.com/amazondynamodb/latest/APIReference/API_BatchGetItem.html
MAX_BATCH_GET_ITEMS = 100

# Capacity units are charged per KB (or fraction thereof) for writes
CAPACITY_UNIT_SIZE_KB = 1.0
BYTES_PER_KB = 1024

# Service constants
DEFAULT_REGION = 'us-east-1'
DEFAULT_ACCOUNT_KEY = 'default'

# Load balancing defaults
DEFAULT_WCU_PER_SECOND = 1000
DEFAULT_RCU_PER_SECOND = 1000
DEFAULT_NUMBER_INDICES = 1
DEFAULT_COOLDOWN_SECONDS = 1.0

# Backoff defaults (milliseconds)
DEFAULT_BACKOFF_ATTEMPTS = 5
DEFAULT_BATCH_STARTING_DELAY_MS = 1000
DEFAULT_UNPROCESSED_STARTING_DELAY_MS = 2000
DEFAULT_BACKOFF_TIME_MULTIPLE = 2.0

# Backend error names eligible for backoff retries
THROTTLING_ERROR_NAMES = frozenset(
    {
        'ProvisionedThroughputExceededException',
        'ThrottlingException',
    }
)

# Partitioned query placeholder, replaced by the partition id
PARTITION_PLACEHOLDER = '%part%'

RECIPES_TABLE_NAME = 'recipes'

# Environment variables
FORGE_DYNAMODB_WCU_PER_SECOND_ENV = 'FORGE_DYNAMODB_WCU_PER_SECOND'
FORGE_DYNAMODB_RCU_PER_SECOND_ENV = 'FORGE_DYNAMODB_RCU_PER_SECOND'
FORGE_DYNAMODB_NUMBER_INDICES_ENV = 'FORGE_DYNAMODB_NUMBER_INDICES'
FORGE_DYNAMODB_BACKOFF_ATTEMPTS_ENV = 'FORGE_DYNAMODB_BACKOFF_ATTEMPTS'
FORGE_DYNAMODB_BACKOFF_STARTING_DELAY_MS_ENV = 'FORGE_DYNAMODB_BACKOFF_STARTING_DELAY_MS'
FORGE_DYNAMODB_BACKOFF_JITTER_ENV = 'FORGE_DYNAMODB_BACKOFF_JITTER'
FORGE_DYNAMODB_COOLDOWN_SECONDS_ENV = 'FORGE_DYNAMODB_COOLDOWN_SECONDS'
FORGE_DYNAMODB_LOG_LEVEL_ENV = 'FORGE_DYNAMODB_LOG_LEVEL'
FORGE_DYNAMODB_RECIPES_TABLE_ENV = 'FORGE_DYNAMODB_RECIPES_TABLE'

# Error messages
ERROR_MISSING_PARTITION_PLACEHOLDER = (
    'One ExpressionAttributeValue used in the KeyConditionExpression must include '
    f'{PARTITION_PLACEHOLDER} to replace with partition id!'
)
ERROR_UNKNOWN_WRITE_REQUEST = (
    'Write request must contain exactly one of PutRequest or DeleteRequest'
)
