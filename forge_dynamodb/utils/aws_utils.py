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

"""AWS session and DynamoDB client management."""

import boto3
import botocore.session
import os
import threading
from forge_dynamodb import __user_agent__
from forge_dynamodb.consts import DEFAULT_ACCOUNT_KEY, DEFAULT_REGION
from forge_dynamodb.document_client import DynamoDBDocumentClient
from loguru import logger
from typing import Any, Dict, Optional, Tuple


def get_region() -> str:
    """Get the AWS region from environment variable or default.

    Returns:
        str: AWS region name
    """
    return os.environ.get('AWS_REGION', DEFAULT_REGION)


def get_aws_session(
    region: Optional[str] = None, credentials: Optional[Dict[str, str]] = None
) -> boto3.Session:
    """Get an AWS session tagged with the package user agent.

    Args:
        region: AWS region, defaults to get_region()
        credentials: Temporary credentials as returned by STS AssumeRole

    Returns:
        boto3.Session: Configured AWS session
    """
    botocore_session = botocore.session.Session()
    botocore_session.user_agent_extra = __user_agent__
    session_kwargs: Dict[str, Any] = {}
    if credentials:
        session_kwargs = {
            'aws_access_key_id': credentials['AccessKeyId'],
            'aws_secret_access_key': credentials['SecretAccessKey'],
            'aws_session_token': credentials.get('SessionToken'),
        }
    return boto3.Session(
        region_name=region or get_region(), botocore_session=botocore_session, **session_kwargs
    )


def assume_role_credentials(role_arn: str, session_name: str, region: Optional[str] = None):
    """Assume an IAM role and return its temporary credentials.

    Args:
        role_arn: ARN of the role to assume
        session_name: Name of the role session
        region: AWS region of the STS endpoint

    Returns:
        dict: AccessKeyId, SecretAccessKey, SessionToken and Expiration

    Raises:
        botocore.exceptions.ClientError: If the role cannot be assumed
    """
    try:
        sts = get_aws_session(region).client('sts')
        response = sts.assume_role(RoleArn=role_arn, RoleSessionName=session_name)
    except Exception as e:
        logger.error(f'Failed to assume role {role_arn}: {e}')
        raise
    return response['Credentials']


class ClientRegistry:
    """Caches one DynamoDB client per account and region."""

    def __init__(self):
        """Initialize the client registry."""
        self.map: Dict[Tuple[str, str], Any] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _key(account_id: Optional[str], region: Optional[str]) -> Tuple[str, str]:
        return (account_id or DEFAULT_ACCOUNT_KEY, region or get_region())

    def get_dynamodb_client(
        self,
        region: Optional[str] = None,
        account_id: Optional[str] = None,
        credentials: Optional[Dict[str, str]] = None,
    ) -> Any:
        """Get the cached boto3 DynamoDB client, creating it on first use.

        Args:
            region: AWS region, defaults to get_region()
            account_id: Account the client belongs to, None for the default account
            credentials: Credentials used when the client has to be created

        Returns:
            boto3 DynamoDB client
        """
        key = self._key(account_id, region)
        with self._lock:
            client = self.map.get(key)
            if client is None:
                try:
                    client = get_aws_session(key[1], credentials).client('dynamodb')
                except Exception as e:
                    logger.error(f'Failed to create DynamoDB client for {key}: {e}')
                    raise
                self.map[key] = client
            return client

    def get_document_client(
        self, region: Optional[str] = None, account_id: Optional[str] = None
    ) -> DynamoDBDocumentClient:
        """Get a document client over the cached DynamoDB client."""
        return DynamoDBDocumentClient(self.get_dynamodb_client(region, account_id))

    def get_cross_account_document_client(
        self,
        account_id: str,
        role_name: str,
        session_name: str,
        region: Optional[str] = None,
    ) -> DynamoDBDocumentClient:
        """Get a document client acting in another account through an assumed role.

        Credentials are only requested when no client is cached for the account.

        Args:
            account_id: Target AWS account
            role_name: Name of the role to assume in the target account
            session_name: Name of the role session
            region: AWS region, defaults to get_region()

        Returns:
            DynamoDBDocumentClient: Client for the target account
        """
        if not account_id:
            raise ValueError('account_id cannot be None or empty')

        key = self._key(account_id, region)
        with self._lock:
            cached = key in self.map

        credentials = None
        if not cached:
            credentials = assume_role_credentials(
                f'arn:aws:iam::{account_id}:role/{role_name}', session_name, key[1]
            )
        return DynamoDBDocumentClient(self.get_dynamodb_client(key[1], account_id, credentials))

    def clear(self) -> None:
        """Drop all cached clients."""
        with self._lock:
            self.map.clear()


# Shared by operations that are not given an explicit document client
default_registry = ClientRegistry()
