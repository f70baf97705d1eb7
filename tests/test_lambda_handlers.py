# tests/test_lambda_handlers.py
import json
from datetime import datetime, time, timedelta

import boto3
from botocore.stub import ANY, Stubber

from backend.lambda_handlers import get_usage, send_alert
from backend.lib.local_store import LocalJsonStore
from backend.lib.sns_service import SNSService
from backend.lib.token_core.errors import StorageError
from backend.lib.token_core.models import Reading

TOPIC = "arn:aws:sns:us-east-1:123456789012:TokenDepletionAlerts"


def days_ago(n):
    return datetime.combine(datetime.now().date() - timedelta(days=n), time(7, 0))


def seeded_store(tmp_path, store_class=LocalJsonStore):
    store = store_class(tmp_path)
    store.save_readings([
        Reading("a", "low", days_ago(3), 40.0, sequence=0),
        Reading("b", "low", days_ago(2), 30.0, sequence=1),
        Reading("c", "low", days_ago(1), 20.0, sequence=2),
        Reading("q", "quiet", days_ago(1), 80.0, sequence=0),
    ])
    return store


def test_get_usage_handler(tmp_path, monkeypatch):
    monkeypatch.setattr(get_usage, "db", seeded_store(tmp_path))

    result = get_usage.lambda_handler({"queryStringParameters": {"user_id": "low"}}, None)
    assert result["statusCode"] == 200
    body = json.loads(result["body"])
    assert [d["usage_kwh"] for d in body["data"]] == [0.0, 10.0, 10.0]

    missing = get_usage.lambda_handler({"queryStringParameters": None}, None)
    assert missing["statusCode"] == 400
    bad = get_usage.lambda_handler({"queryStringParameters": {"user_id": "low", "period": "year"}}, None)
    assert bad["statusCode"] == 400


def test_scheduled_check_alerts_only_classified_users(tmp_path, monkeypatch):
    client = boto3.client("sns", region_name="us-east-1",
                          aws_access_key_id="test", aws_secret_access_key="test")
    stubber = Stubber(client)
    stubber.add_response(
        "publish",
        {"MessageId": "m-1"},
        {"TopicArn": TOPIC, "Subject": "[CRITICAL] Prepaid token running out - low", "Message": ANY},
    )
    monkeypatch.setattr(send_alert, "db", seeded_store(tmp_path))
    monkeypatch.setattr(send_alert, "sns", SNSService(topic_arn=TOPIC, client=client))

    with stubber:
        result = send_alert.lambda_handler({"source": "aws.events"}, None)
    stubber.assert_no_pending_responses()

    body = json.loads(result["body"])
    assert body["checked"] == 2
    assert body["alerts_sent"] == 1
    low = next(r for r in body["results"] if r["user_id"] == "low")
    assert (low["level"], low["days_until_depletion"]) == ("CRITICAL", 2)


def test_api_check_requires_user(tmp_path, monkeypatch):
    monkeypatch.setattr(send_alert, "db", seeded_store(tmp_path))
    monkeypatch.setattr(send_alert, "sns", SNSService(topic_arn=TOPIC, client=object()))

    assert send_alert.lambda_handler({"queryStringParameters": {}}, None)["statusCode"] == 400
    quiet = send_alert.lambda_handler({"queryStringParameters": {"user_id": "quiet"}}, None)
    assert json.loads(quiet["body"])["alert_sent"] is False


class ThrottledFor(LocalJsonStore):
    def list_readings(self, user_id, limit=None):
        if user_id == "quiet":
            raise StorageError("throttled")
        return super().list_readings(user_id, limit)


def test_scheduled_check_keeps_going_after_one_user_fails(tmp_path, monkeypatch):
    client = boto3.client("sns", region_name="us-east-1",
                          aws_access_key_id="test", aws_secret_access_key="test")
    stubber = Stubber(client)
    stubber.add_response("publish", {"MessageId": "m-2"}, None)
    monkeypatch.setattr(send_alert, "db", seeded_store(tmp_path, ThrottledFor))
    monkeypatch.setattr(send_alert, "sns", SNSService(topic_arn=TOPIC, client=client))

    with stubber:
        result = send_alert.lambda_handler({"source": "aws.events"}, None)

    assert result["statusCode"] == 200
    body = json.loads(result["body"])
    assert body["alerts_sent"] == 1
    failed = next(r for r in body["results"] if r["user_id"] == "quiet")
    assert failed["error"] == "throttled"
