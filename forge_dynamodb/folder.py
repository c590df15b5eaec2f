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

"""Folding of parallel batch outcomes into pending work and returned items."""

from forge_dynamodb.models import BatchOutcome, FoldedOutcome
from typing import Any, Dict, List, Sequence


def fold_outcomes(outcomes: Sequence[BatchOutcome]) -> FoldedOutcome:
    """Merge the outcomes of one round of parallel batch calls.

    Items are concatenated in outcome order. Unprocessed requests are
    concatenated per table without deduplication, so they can be retried as
    submitted. Tables without leftovers do not appear in the merged map.
    Consumed capacity units reported by the backend are summed.

    Args:
        outcomes: Outcomes of one parallel round

    Returns:
        FoldedOutcome: Returned items, the merged unprocessed map and consumed capacity
    """
    items: List[Dict[str, Any]] = []
    unprocessed: Dict[str, List[Any]] = {}
    consumed_capacity_units = 0.0
    for outcome in outcomes:
        items.extend(outcome.items)
        consumed_capacity_units += sum(
            float(entry.get('CapacityUnits') or 0) for entry in outcome.consumed_capacity
        )
        if not outcome.has_unprocessed:
            continue
        for table, requests in outcome.unprocessed.items():
            if requests:
                unprocessed.setdefault(table, []).extend(requests)
    return FoldedOutcome(
        items=items, unprocessed=unprocessed, consumed_capacity_units=consumed_capacity_units
    )


def count_requests(request_map: Dict[str, Sequence[Any]]) -> int:
    """Count the requests of a per-table request map."""
    return sum(len(requests) for requests in request_map.values())
