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

"""Recipe records stored in the recipes table, keyed by pk1 and sk1."""

from forge_dynamodb.document_client import DynamoDBDocumentClient
from forge_dynamodb.load_balancer import batch_write_sequential
from forge_dynamodb.models import BatchRunResult, PutRequest, WriteLoadConfig
from forge_dynamodb.operations import (
    delete_item,
    get_item,
    put_item,
    query_all,
    update_item,
    utc_timestamp,
)
from forge_dynamodb.utils.aws_utils import default_registry
from forge_dynamodb.utils.config import get_recipes_table_name, get_write_load_config
from pydantic import BaseModel, ConfigDict, Field
from typing import Iterable, List, Optional


RECIPE_KEY_ATTRIBUTES = ('pk1', 'sk1')


class Recipe(BaseModel):
    """A recipe item. Attributes other than the key are kept as they are."""

    model_config = ConfigDict(extra='allow')

    pk1: str = Field(..., min_length=1, description='Partition key')
    sk1: str = Field(..., min_length=1, description='Sort key')

    @property
    def key(self) -> dict:
        """Primary key of the recipe."""
        return {'pk1': self.pk1, 'sk1': self.sk1}

    def attributes(self) -> dict:
        """Non-key attributes of the recipe."""
        return {
            name: value
            for name, value in self.model_dump().items()
            if name not in RECIPE_KEY_ATTRIBUTES
        }


async def create_recipe(
    recipe: Recipe, *, store: Optional[DynamoDBDocumentClient] = None
) -> Recipe:
    """Store a recipe, stamping createdAt and updatedAt unless it carries them."""
    now = utc_timestamp()
    item = {'createdAt': now, 'updatedAt': now, **recipe.model_dump()}
    await put_item(get_recipes_table_name(), item, store=store)
    return Recipe.model_validate(item)


async def get_recipe(
    pk1: str, sk1: str, *, store: Optional[DynamoDBDocumentClient] = None
) -> Recipe:
    """Get a recipe by key.

    Raises:
        NotFoundError: If the recipe does not exist
    """
    item = await get_item(get_recipes_table_name(), {'pk1': pk1, 'sk1': sk1}, store=store)
    return Recipe.model_validate(item)


async def update_recipe(
    recipe: Recipe, *, store: Optional[DynamoDBDocumentClient] = None
) -> dict:
    """Update the attributes of an existing recipe.

    Raises:
        botocore.exceptions.ClientError: ConditionalCheckFailedException if the
            recipe does not exist
    """
    return await update_item(
        get_recipes_table_name(),
        recipe.key,
        recipe.attributes(),
        overrides={'ConditionExpression': 'attribute_exists(pk1)'},
        nested=False,
        store=store,
    )


async def delete_recipe(
    pk1: str, sk1: str, *, store: Optional[DynamoDBDocumentClient] = None
) -> Optional[Recipe]:
    """Delete a recipe and return it, or None if it did not exist."""
    item = await delete_item(
        get_recipes_table_name(), {'pk1': pk1, 'sk1': sk1}, return_item=True, store=store
    )
    return Recipe.model_validate(item) if item else None


async def list_recipes(
    pk1: str, *, store: Optional[DynamoDBDocumentClient] = None
) -> List[Recipe]:
    """List all recipes sharing a partition key."""
    page = await query_all(
        {
            'TableName': get_recipes_table_name(),
            'KeyConditionExpression': '#pk1 = :pk1',
            'ExpressionAttributeNames': {'#pk1': 'pk1'},
            'ExpressionAttributeValues': {':pk1': pk1},
        },
        store=store,
    )
    return [Recipe.model_validate(item) for item in page.items]


async def import_recipes(
    recipes: Iterable[Recipe],
    *,
    config: Optional[WriteLoadConfig] = None,
    store: Optional[DynamoDBDocumentClient] = None,
) -> BatchRunResult:
    """Bulk write recipes through the write load balancer.

    Args:
        recipes: Recipes to write, existing items with the same key are replaced
        config: Load balancing settings, read from the environment when omitted
        store: Document client, defaults to the shared client of the default account

    Returns:
        BatchRunResult: Retry and batching statistics of the import

    Raises:
        UnprocessedResidualError: If throttled recipes remain after all retries
    """
    table_name = get_recipes_table_name()
    requests = [PutRequest(recipe.model_dump()) for recipe in recipes]
    return await batch_write_sequential(
        store if store is not None else default_registry.get_document_client(),
        {table_name: requests},
        config or get_write_load_config(),
    )
