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

"""Builders for DynamoDB projection and update expressions."""

import copy
import re
from typing import Any, Dict, List, Mapping, Optional


# Attributes that keep the value they were first written with
WRITE_ONCE_ATTRIBUTES = ('createdAt', 'createdBy')


def _placeholder(name: str) -> str:
    return re.sub(r'[^A-Za-z0-9_]', '_', name)


def get_projection_expression(projection: Optional[List[str]]) -> Optional[str]:
    """Build a ProjectionExpression from a list of attribute names.

    Args:
        projection: Attribute names to project

    Returns:
        Comma separated name placeholders, or None without projection
    """
    if not projection:
        return None
    return ','.join(f'#{_placeholder(name)}' for name in projection)


def get_expression_attribute_names(
    projection: Optional[List[str]] = None,
    expression_attribute_names: Optional[Dict[str, str]] = None,
) -> Optional[Dict[str, str]]:
    """Build ExpressionAttributeNames for a projection, merged with explicit names.

    Args:
        projection: Attribute names to project
        expression_attribute_names: Names already used by other expressions

    Returns:
        Merged placeholder map, or None if both inputs are empty
    """
    if not projection and not expression_attribute_names:
        return None
    names = {f'#{_placeholder(name)}': name for name in projection or []}
    names.update(expression_attribute_names or {})
    return names


class _Placeholders:
    """Issues unique name and value placeholders for one UpdateItem call."""

    def __init__(self, params: Dict[str, Any]):
        self.params = params
        self.counters = {'#n': 0, ':v': 0}

    def _next(self, prefix: str, taken: Mapping[str, Any]) -> str:
        while f'{prefix}{self.counters[prefix]}' in taken:
            self.counters[prefix] += 1
        token = f'{prefix}{self.counters[prefix]}'
        self.counters[prefix] += 1
        return token

    def name(self, attribute: str) -> str:
        names = self.params['ExpressionAttributeNames']
        token = self._next('#n', names)
        names[token] = attribute
        return token

    def value(self, value: Any) -> str:
        values = self.params['ExpressionAttributeValues']
        token = self._next(':v', values)
        values[token] = value
        return token


def _append_set_action(params: Dict[str, Any], action: str) -> None:
    prefix = ', ' if params['UpdateExpression'] else 'set '
    params['UpdateExpression'] += f'{prefix}{action}'


def _build_update_expression(placeholders: _Placeholders, attribute: str, value: Any) -> None:
    name = placeholders.name(attribute)
    token = placeholders.value(value)
    if attribute in WRITE_ONCE_ATTRIBUTES:
        _append_set_action(placeholders.params, f'{name} = if_not_exists({name}, {token})')
    else:
        _append_set_action(placeholders.params, f'{name} = {token}')


def _build_nested_update_expression(
    placeholders: _Placeholders, nested_input: Mapping[str, Any], path: str
) -> None:
    for nested_key, value in nested_input.items():
        full_path = f'{path}.{placeholders.name(nested_key)}'
        if isinstance(value, Mapping) and value:
            _build_nested_update_expression(placeholders, value, full_path)
        else:
            _append_set_action(placeholders.params, f'{full_path} = {placeholders.value(value)}')


def get_update_operation(
    item: Mapping[str, Any],
    key: Optional[Mapping[str, Any]],
    params: Mapping[str, Any],
    nested: bool = False,
) -> Dict[str, Any]:
    """Build UpdateItem parameters that SET every attribute of ``item``.

    Key attributes and None values are skipped. With ``nested`` only the
    leaves of map values are set, keeping sibling attributes of the stored map.
    Every path segment and value gets its own numbered placeholder (``#n0``,
    ``:v0``), skipping placeholders already present in ``params``. The input
    params are not mutated.

    Args:
        item: Attributes to update
        key: Key of the item, its attributes are never updated
        params: Base UpdateItem parameters
        nested: Update map values leaf by leaf

    Returns:
        New UpdateItem parameters
    """
    new_params = copy.deepcopy(dict(params))
    new_params['UpdateExpression'] = new_params.get('UpdateExpression') or ''
    new_params['ExpressionAttributeValues'] = new_params.get('ExpressionAttributeValues') or {}
    new_params['ExpressionAttributeNames'] = new_params.get('ExpressionAttributeNames') or {}

    if not key:
        return new_params

    placeholders = _Placeholders(new_params)
    for attribute, value in item.items():
        if attribute in key or value is None:
            continue
        if nested and isinstance(value, Mapping) and value:
            _build_nested_update_expression(placeholders, value, placeholders.name(attribute))
        else:
            _build_update_expression(placeholders, attribute, value)

    return new_params
