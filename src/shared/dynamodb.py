"""DynamoDB utilities and helper functions."""

import os
import boto3
from typing import Any, Dict, List, Optional
from decimal import Decimal
from botocore.exceptions import BotoCoreError, ClientError
import logging

from .exceptions import PersistError

logger = logging.getLogger(__name__)

CONDITION_FAILED = 'ConditionalCheckFailedException'


class DynamoDBClient:
    """DynamoDB table wrapper with common operations."""

    def __init__(self, table_name: str, dynamodb: Any = None):
        """
        Initialize DynamoDB client.

        Args:
            table_name: Name of the DynamoDB table
            dynamodb: Optional pre-built boto3 DynamoDB resource
        """
        self.table_name = table_name

        if dynamodb is None:
            # Support for LocalStack
            endpoint_url = os.environ.get('LOCALSTACK_ENDPOINT')
            if endpoint_url and os.environ.get('USE_LOCALSTACK', 'false').lower() == 'true':
                dynamodb = boto3.resource('dynamodb', endpoint_url=endpoint_url)
            else:
                dynamodb = boto3.resource('dynamodb')

        self.dynamodb = dynamodb
        self.table = self.dynamodb.Table(table_name)

    def put_item(
        self,
        item: Dict[str, Any],
        condition_expression: Optional[Any] = None
    ) -> Dict[str, Any]:
        """
        Put an item in the table.

        Args:
            item: Item to put
            condition_expression: Optional condition the write must satisfy

        Returns:
            The item that was put

        Raises:
            PersistError: If the operation fails or the condition is not met
        """
        try:
            item = self._python_to_dynamodb(item)
            kwargs = {'Item': item}
            if condition_expression is not None:
                kwargs['ConditionExpression'] = condition_expression
            self.table.put_item(**kwargs)
            return item
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error putting item into {self.table_name}: {e}")
            raise PersistError(f"Failed to put item: {str(e)}")

    def get_item(self, key: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """
        Get an item from the table.

        Args:
            key: Primary key of the item

        Returns:
            The item if found, None otherwise

        Raises:
            PersistError: If the operation fails
        """
        try:
            response = self.table.get_item(Key=key, ConsistentRead=True)
            return response.get('Item')
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error getting item from {self.table_name}: {e}")
            raise PersistError(f"Failed to get item: {str(e)}")

    def update_item(
        self,
        key: Dict[str, Any],
        update_expression: str,
        expression_values: Optional[Dict[str, Any]] = None,
        expression_names: Optional[Dict[str, str]] = None,
        condition_expression: Optional[str] = None
    ) -> Optional[Dict[str, Any]]:
        """
        Update an item in the table.

        Args:
            key: Primary key of the item
            update_expression: Update expression
            expression_values: Expression attribute values
            expression_names: Optional expression attribute names
            condition_expression: Optional condition the item must satisfy

        Returns:
            Updated item, or None when the condition was not met

        Raises:
            PersistError: If the operation fails
        """
        try:
            kwargs = {
                'Key': key,
                'UpdateExpression': update_expression,
                'ReturnValues': 'ALL_NEW'
            }

            if expression_values:
                kwargs['ExpressionAttributeValues'] = self._python_to_dynamodb(expression_values)
            if expression_names:
                kwargs['ExpressionAttributeNames'] = expression_names
            if condition_expression:
                kwargs['ConditionExpression'] = condition_expression

            response = self.table.update_item(**kwargs)
            return response['Attributes']
        except ClientError as e:
            if e.response['Error']['Code'] == CONDITION_FAILED:
                return None
            logger.error(f"Error updating item in {self.table_name}: {e}")
            raise PersistError(f"Failed to update item: {str(e)}")
        except BotoCoreError as e:
            logger.error(f"Error updating item in {self.table_name}: {e}")
            raise PersistError(f"Failed to update item: {str(e)}")

    def delete_item(
        self,
        key: Dict[str, Any],
        condition_expression: Optional[str] = None,
        expression_names: Optional[Dict[str, str]] = None
    ) -> bool:
        """
        Delete an item from the table.

        Args:
            key: Primary key of the item
            condition_expression: Optional condition the item must satisfy
            expression_names: Optional expression attribute names

        Returns:
            True if deleted, False when the condition was not met

        Raises:
            PersistError: If the operation fails
        """
        try:
            kwargs = {'Key': key}
            if condition_expression:
                kwargs['ConditionExpression'] = condition_expression
            if expression_names:
                kwargs['ExpressionAttributeNames'] = expression_names
            self.table.delete_item(**kwargs)
            return True
        except ClientError as e:
            if e.response['Error']['Code'] == CONDITION_FAILED:
                return False
            logger.error(f"Error deleting item from {self.table_name}: {e}")
            raise PersistError(f"Failed to delete item: {str(e)}")
        except BotoCoreError as e:
            logger.error(f"Error deleting item from {self.table_name}: {e}")
            raise PersistError(f"Failed to delete item: {str(e)}")

    def query_all(
        self,
        key_condition_expression: Any,
        filter_expression: Optional[Any] = None
    ) -> List[Dict[str, Any]]:
        """
        Query items from the table, following pagination to the end.

        Args:
            key_condition_expression: Key condition expression
            filter_expression: Optional filter expression

        Returns:
            All matching items

        Raises:
            PersistError: If the operation fails
        """
        kwargs = {'KeyConditionExpression': key_condition_expression}
        if filter_expression is not None:
            kwargs['FilterExpression'] = filter_expression

        items = []
        try:
            while True:
                response = self.table.query(**kwargs)
                items.extend(response.get('Items', []))

                last_key = response.get('LastEvaluatedKey')
                if not last_key:
                    break
                kwargs['ExclusiveStartKey'] = last_key
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error querying {self.table_name}: {e}")
            raise PersistError(f"Failed to query items: {str(e)}")

        return items

    def scan_all(self, projection: Optional[List[str]] = None) -> List[Dict[str, Any]]:
        """
        Scan the whole table.

        Args:
            projection: Optional list of attribute names to return

        Returns:
            All items

        Raises:
            PersistError: If the operation fails
        """
        kwargs = {}
        if projection:
            kwargs['ProjectionExpression'] = ', '.join(f'#p{i}' for i in range(len(projection)))
            kwargs['ExpressionAttributeNames'] = {f'#p{i}': name for i, name in enumerate(projection)}

        items = []
        try:
            while True:
                response = self.table.scan(**kwargs)
                items.extend(response.get('Items', []))

                last_key = response.get('LastEvaluatedKey')
                if not last_key:
                    break
                kwargs['ExclusiveStartKey'] = last_key
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error scanning {self.table_name}: {e}")
            raise PersistError(f"Failed to scan items: {str(e)}")

        return items

    @staticmethod
    def _python_to_dynamodb(obj: Any) -> Any:
        """Convert Python objects to DynamoDB compatible format."""
        if isinstance(obj, dict):
            return {k: DynamoDBClient._python_to_dynamodb(v) for k, v in obj.items()}
        elif isinstance(obj, list):
            return [DynamoDBClient._python_to_dynamodb(item) for item in obj]
        elif isinstance(obj, float):
            return Decimal(str(obj))
        return obj
