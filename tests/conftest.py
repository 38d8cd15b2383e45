"""Pytest configuration and fixtures."""

import random

import boto3
import pytest
from moto import mock_aws

from datamold.storage import LocalStorage, S3Storage

TEST_BUCKET = "test-bucket"


@pytest.fixture
def aws_credentials(monkeypatch):
    """Mock AWS credentials for moto."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SECURITY_TOKEN", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")
    monkeypatch.delenv("AWS_ENDPOINT_URL", raising=False)
    monkeypatch.delenv("AWS_REGION", raising=False)


@pytest.fixture
def s3_client(aws_credentials):
    """Create a mocked S3 client."""
    with mock_aws():
        yield boto3.client("s3", region_name="us-east-1")


@pytest.fixture
def s3_storage(s3_client):
    """S3Storage bound to a bucket that already exists."""
    s3_client.create_bucket(Bucket=TEST_BUCKET)
    return S3Storage(TEST_BUCKET, region="us-east-1", client=s3_client)


@pytest.fixture
def local_storage(tmp_path):
    """LocalStorage rooted in a temporary directory, bucket created."""
    storage = LocalStorage(tmp_path / "root", TEST_BUCKET)
    storage.create_bucket()
    return storage


@pytest.fixture
def rng():
    return random.Random(42)
