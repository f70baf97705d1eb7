# backend/lambda_handlers/get_usage.py
"""
Lambda function to get derived usage for a user
Triggered by API Gateway
"""
import json
import logging

from backend.lib.dynamodb_service import DynamoDBService
from backend.lib.token_core.errors import TokenCoreError
from backend.lib.token_core.processor import EnergyAnalyzer
from backend.lib.token_core.settings import EngineSettings

logger = logging.getLogger()
logger.setLevel(logging.INFO)

# Created once per container, reused across invocations
settings = EngineSettings.from_env()
db = None


def get_db() -> DynamoDBService:
    global db
    if db is None:
        db = DynamoDBService()
    return db


def lambda_handler(event, context):
    """
    Get usage data for a user.

    Query parameters:
    - user_id: Required
    - period: 'day', 'week' or 'month' (default: 'day')
    - limit: most recent N weeks/months (default 12)
    """
    logger.info("Received event: %s", json.dumps(event))

    params = event.get('queryStringParameters') or {}
    user_id = params.get('user_id')
    period = params.get('period', 'day')

    if not user_id:
        return response(400, {'error': 'user_id is required'})
    if period not in ('day', 'week', 'month'):
        return response(400, {'error': "period must be 'day', 'week' or 'month'"})
    try:
        limit = int(params.get('limit') or 12)
    except ValueError:
        return response(400, {'error': 'limit must be an integer'})

    try:
        analyzer = EnergyAnalyzer(get_db().list_readings(user_id), settings)
    except TokenCoreError as e:
        logger.error("Error: %s", e)
        return response(500, {'error': str(e)})

    if period == 'week':
        data = analyzer.weekly_usage(limit)
    elif period == 'month':
        data = analyzer.monthly_usage(limit)
    else:
        data = analyzer.daily_usage()

    return response(200, {
        'user_id': user_id,
        'period': period,
        'data': [item.to_dict() for item in data]
    })


def response(status_code: int, body: dict) -> dict:
    """Create API Gateway response."""
    return {
        'statusCode': status_code,
        'headers': {
            'Content-Type': 'application/json',
            'Access-Control-Allow-Origin': '*',
            'Access-Control-Allow-Methods': 'GET,POST,OPTIONS',
            'Access-Control-Allow-Headers': 'Content-Type'
        },
        'body': json.dumps(body)
    }
