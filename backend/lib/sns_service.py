"""
=============================================================================
SNS SERVICE - Amazon Simple Notification Service alerts
=============================================================================

Publishes token depletion alerts to a topic; every confirmed subscriber
(email, SMS, ...) receives them.

Key SNS Concepts:
-----------------
1. Topic: the channel alerts are published to
2. Subscription: topic -> endpoint; email subscriptions must be confirmed
   by clicking the link AWS sends
3. Message: subject line plus plain-text body

Flow:
-----
[Flask app / scheduled Lambda] --> [SNS Topic] --> [Email subscriber 1]
                                              --> [Email subscriber 2]

Alerts are sent only for a classified prediction:
- CRITICAL: the token runs out within CRITICAL_DAYS (default 3)
- WARNING:  within WARNING_DAYS (default 7)
=============================================================================
"""
import logging
import os
from typing import Dict, List, Optional

# boto3 - AWS SDK for Python
import boto3

# ClientError - raised for any failed AWS API call
from botocore.exceptions import ClientError

from backend.lib.token_core.dates import format_local_date
from backend.lib.token_core.models import Prediction

logger = logging.getLogger(__name__)

SUBJECT_MAX_LENGTH = 100


def depletion_level(prediction: Prediction) -> Optional[str]:
    if not prediction.has_data:
        return None
    if prediction.is_critical:
        return "CRITICAL"
    if prediction.is_warning:
        return "WARNING"
    return None


class SNSService:
    """
    Usage:
        sns = SNSService()
        sns.create_topic_if_not_exists()
        sns.subscribe_email("user@example.com")
        sns.send_depletion_alert("user-1", prediction)
    """

    def __init__(self, topic_arn: str = None, client=None):
        """
        Args:
            topic_arn: existing topic ARN, else SNS_TOPIC_ARN; when neither is
                set, create_topic_if_not_exists() creates SNS_TOPIC_NAME.
            client: pre-built boto3 SNS client (tests pass a stub).
        """
        self.topic_arn = topic_arn or os.getenv('SNS_TOPIC_ARN')
        self.topic_name = os.getenv('SNS_TOPIC_NAME', 'TokenDepletionAlerts')
        self.region = os.getenv('AWS_REGION', 'us-east-1')

        # Session token for temporary (lab / STS) credentials
        session_token = os.getenv('AWS_SESSION_TOKEN')
        self.sns_client = client or boto3.client(
            'sns',
            region_name=self.region,
            aws_access_key_id=os.getenv('AWS_ACCESS_KEY_ID'),
            aws_secret_access_key=os.getenv('AWS_SECRET_ACCESS_KEY'),
            aws_session_token=session_token if session_token else None
        )

    def create_topic_if_not_exists(self) -> Optional[str]:
        """create_topic is idempotent: an existing topic's ARN is returned."""
        try:
            response = self.sns_client.create_topic(Name=self.topic_name)
            self.topic_arn = response['TopicArn']
            logger.info("SNS topic ready: %s", self.topic_arn)
            return self.topic_arn
        except ClientError as e:
            logger.error("Failed to create SNS topic: %s", e)
            return None

    def subscribe_email(self, email: str) -> Optional[str]:
        """
        Subscribe an email address. AWS sends a confirmation mail and the
        subscription stays 'pending confirmation' until the link is clicked.
        """
        if not self.topic_arn:
            logger.warning("No topic ARN configured")
            return None
        try:
            response = self.sns_client.subscribe(
                TopicArn=self.topic_arn,
                Protocol='email',
                Endpoint=email
            )
            return response['SubscriptionArn']
        except ClientError as e:
            logger.error("Failed to subscribe email: %s", e)
            return None

    def list_subscriptions(self) -> List[Dict]:
        if not self.topic_arn:
            return []
        try:
            response = self.sns_client.list_subscriptions_by_topic(TopicArn=self.topic_arn)
            return response.get('Subscriptions', [])
        except ClientError as e:
            logger.error("Failed to list subscriptions: %s", e)
            return []

    def send_alert(self, subject: str, message: str) -> bool:
        """Publish to every subscriber. SNS rejects subjects over 100 chars."""
        if not self.topic_arn:
            logger.warning("No topic ARN configured")
            return False
        try:
            self.sns_client.publish(
                TopicArn=self.topic_arn,
                Subject=subject[:SUBJECT_MAX_LENGTH],
                Message=message
            )
            return True
        except ClientError as e:
            logger.error("Failed to send alert: %s", e)
            return False

    def send_depletion_alert(self, user_id: str, prediction: Prediction) -> bool:
        """
        Alert when the prediction is CRITICAL or WARNING; returns False
        without publishing otherwise.

        Example Email:
            Subject: [CRITICAL] Prepaid token running out - user-1

            Prepaid Token Depletion Alert

            User: user-1
            Remaining: 25.00 kWh
            Average usage: 10.00 kWh/day
            Days left: 3 (empty around 2025-11-13)
        """
        level = depletion_level(prediction)
        if level is None:
            # Nothing to report: plenty of token left, or no data yet
            return False

        depletion_date = (
            format_local_date(prediction.predicted_depletion_date)
            if prediction.predicted_depletion_date else "unknown"
        )
        subject = f"[{level}] Prepaid token running out - {user_id}"
        message = f"""
Prepaid Token Depletion Alert

User: {user_id}
Remaining: {prediction.remaining_kwh:.2f} kWh
Average usage: {prediction.avg_daily_usage:.2f} kWh/day
Days left: {prediction.days_until_depletion} (empty around {depletion_date})

Top up your token before it runs out.

---
Prepaid Token Tracker
        """.strip()

        # [LEVEL] prefix in the subject
        sent = self.send_alert(subject, message)
        if sent:
            logger.info("%s depletion alert sent for %s (%s days left)",
                        level, user_id, prediction.days_until_depletion)
        return sent
