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

"""Logging setup for applications embedding forge-dynamodb."""

import os
import sys
from forge_dynamodb.consts import FORGE_DYNAMODB_LOG_LEVEL_ENV
from loguru import logger
from typing import Optional


def configure_logging(level: Optional[str] = None) -> int:
    """Route loguru output to stderr at the given level.

    Removes the default sink first. The library itself never calls this.

    Args:
        level: Log level, defaults to FORGE_DYNAMODB_LOG_LEVEL or WARNING

    Returns:
        int: Identifier of the added sink
    """
    logger.remove()
    return logger.add(
        sys.stderr, level=level or os.getenv(FORGE_DYNAMODB_LOG_LEVEL_ENV, 'WARNING')
    )
