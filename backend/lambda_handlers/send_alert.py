# backend/lambda_handlers/send_alert.py
"""
Lambda function to send token depletion alerts via SNS
Can be triggered by CloudWatch Events (scheduled) or API Gateway
"""
import json
import logging

from backend.lib.dynamodb_service import DynamoDBService
from backend.lib.sns_service import SNSService, depletion_level
from backend.lib.token_core.errors import TokenCoreError
from backend.lib.token_core.predictor import predict_depletion
from backend.lib.token_core.settings import EngineSettings

logger = logging.getLogger()
logger.setLevel(logging.INFO)

settings = EngineSettings.from_env()
db = None
sns = None


def get_services():
    global db, sns
    if db is None:
        db = DynamoDBService()
    if sns is None:
        sns = SNSService()
    return db, sns


def lambda_handler(event, context):
    """
    Check predictions and alert on CRITICAL / WARNING tokens.

    Can be triggered by:
    - CloudWatch Events (scheduled check of every user)
    - API Gateway (?user_id=... checks one user)
    """
    logger.info("Received event: %s", json.dumps(event))

    try:
        if 'queryStringParameters' in event:
            return handle_api_request(event)
        return handle_scheduled_check(event)
    except TokenCoreError as e:
        logger.error("Error: %s", e)
        return response(500, {'error': str(e)})


def check_user(user_id: str) -> dict:
    db, sns = get_services()
    prediction = predict_depletion(db.list_readings(user_id), settings)
    sent = sns.send_depletion_alert(user_id, prediction)
    return {
        'user_id': user_id,
        'level': depletion_level(prediction),
        'days_until_depletion': prediction.days_until_depletion,
        'alert_sent': sent
    }


def handle_api_request(event):
    params = event.get('queryStringParameters') or {}
    user_id = params.get('user_id')
    if not user_id:
        return response(400, {'error': 'user_id required'})
    return response(200, check_user(user_id))


def handle_scheduled_check(event):
    db, _ = get_services()
    results = []
    for user_id in db.get_all_users():
        try:
            results.append(check_user(user_id))
        except TokenCoreError as e:
            # One user's storage failure must not cost the others their alert
            logger.error("Check failed for %s: %s", user_id, e)
            results.append({'user_id': user_id, 'error': str(e), 'alert_sent': False})
    alerts_sent = sum(1 for r in results if r['alert_sent'])
    logger.info("Scheduled check: %d users, %d alerts", len(results), alerts_sent)
    return response(200, {'checked': len(results), 'alerts_sent': alerts_sent, 'results': results})


def response(status_code: int, body: dict) -> dict:
    """Create API Gateway response."""
    return {
        'statusCode': status_code,
        'headers': {
            'Content-Type': 'application/json',
            'Access-Control-Allow-Origin': '*'
        },
        'body': json.dumps(body)
    }
