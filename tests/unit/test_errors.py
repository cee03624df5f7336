"""
Unit tests for third-party error mapping.
"""

import psycopg
from botocore.exceptions import ClientError, NoCredentialsError

from item_publisher.errors import (
    AuditStoreError,
    PublisherError,
    TransportError,
    map_db_error,
    map_transport_error,
)


def test_client_error_keeps_aws_code():
    err = ClientError({"Error": {"Code": "AccessDenied", "Message": "denied"}}, "SendMessageBatch")
    mapped = map_transport_error(err)

    assert isinstance(mapped, TransportError)
    assert isinstance(mapped, PublisherError)
    assert mapped.code == "AccessDenied"
    assert str(mapped) == "denied"


def test_botocore_error_code_is_class_name():
    mapped = map_transport_error(NoCredentialsError())
    assert mapped.code == "NoCredentialsError"


def test_other_errors_get_unknown_code():
    mapped = map_transport_error(OSError("socket closed"))
    assert mapped.code == "UNKNOWN"
    assert "socket closed" in str(mapped)


def test_db_errors_mapped():
    assert "unavailable" in str(map_db_error(psycopg.OperationalError("down")))
    generic = map_db_error(psycopg.DataError("bad value"))
    assert isinstance(generic, AuditStoreError)
    assert "bad value" in str(generic)
