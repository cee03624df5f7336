"""
Unit tests for SqsTransport (boto3 client faked) and InMemoryTransport.
"""

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from item_publisher.config import PublisherSettings
from item_publisher.delivery import InMemoryTransport, SqsTransport
from item_publisher.errors import TransportError

QUEUE_URL = "https://sqs.us-east-1.amazonaws.com/123456789012/item-master"


@pytest.mark.asyncio
async def test_send_batch_maps_request_and_response(entries):
    client = MagicMock()
    client.send_message_batch.return_value = {
        "Successful": [{"Id": "m0", "MessageId": "aws-1"}],
        "Failed": [
            {"Id": "m1", "Code": "InvalidParameterValue", "Message": "too long", "SenderFault": True}
        ],
    }
    transport = SqsTransport(QUEUE_URL, client=client)
    batch = entries(2)

    response = await transport.send_batch(batch)

    client.send_message_batch.assert_called_once_with(
        QueueUrl=QUEUE_URL,
        Entries=[{"Id": e.id, "MessageBody": e.payload} for e in batch],
    )
    assert response.successful_ids == frozenset({"m0"})
    failure = response.failed[0]
    assert (failure.id, failure.code, failure.message, failure.sender_fault) == (
        "m1",
        "InvalidParameterValue",
        "too long",
        True,
    )


@pytest.mark.asyncio
async def test_send_batch_tolerates_missing_lists(entries):
    client = SimpleNamespace(send_message_batch=lambda **kwargs: {"Successful": [{"Id": "m0"}]})
    response = await SqsTransport(QUEUE_URL, client=client).send_batch(entries(1))

    assert response.successful_ids == frozenset({"m0"})
    assert response.failed == ()


@pytest.mark.asyncio
async def test_client_error_mapped_to_transport_error(entries):
    def _raise(**kwargs):
        raise ClientError(
            {"Error": {"Code": "AWS.SimpleQueueService.NonExistentQueue", "Message": "no such queue"}},
            "SendMessageBatch",
        )

    transport = SqsTransport(QUEUE_URL, client=SimpleNamespace(send_message_batch=_raise))
    with pytest.raises(TransportError) as exc:
        await transport.send_batch(entries(1))

    assert exc.value.code == "AWS.SimpleQueueService.NonExistentQueue"
    assert str(exc.value) == "no such queue"


@pytest.mark.asyncio
async def test_botocore_error_mapped_with_type_name(entries):
    def _raise(**kwargs):
        raise EndpointConnectionError(endpoint_url="http://localhost:4566")

    transport = SqsTransport(QUEUE_URL, client=SimpleNamespace(send_message_batch=_raise))
    with pytest.raises(TransportError) as exc:
        await transport.send_batch(entries(1))

    assert exc.value.code == "EndpointConnectionError"


def test_queue_url_required():
    with pytest.raises(ValueError):
        SqsTransport("")


def test_from_settings_uses_queue_and_region():
    settings = PublisherSettings(SQS_QUEUE_URL=QUEUE_URL, AWS_REGION="eu-west-1")
    client = MagicMock()
    transport = SqsTransport.from_settings(settings, client=client)

    assert transport.queue_url == QUEUE_URL
    assert transport._region_name == "eu-west-1"
    assert transport._get_client() is client


def test_boto3_client_created_lazily(monkeypatch):
    created = {}

    def fake_client(service, **kwargs):
        created["service"] = service
        created.update(kwargs)
        return MagicMock()

    monkeypatch.setattr("boto3.client", fake_client)
    transport = SqsTransport(QUEUE_URL, region_name="us-east-1", endpoint_url="http://localhost:4566")
    assert created == {}

    transport._get_client()
    transport._get_client()

    assert created == {
        "service": "sqs",
        "region_name": "us-east-1",
        "endpoint_url": "http://localhost:4566",
    }


@pytest.mark.asyncio
async def test_in_memory_transport_records_batches(entries):
    transport = InMemoryTransport()
    first, second = entries(3), entries(2, prefix="n")

    r1 = await transport.send_batch(first)
    await transport.send_batch(second)

    assert r1.successful_ids == frozenset(e.id for e in first)
    assert len(transport.batches) == 2
    assert transport.published == first + second

    transport.clear()
    assert transport.published == []
