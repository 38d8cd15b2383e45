"""Unit tests for S3 storage backend with moto mocking."""

from datetime import datetime, timezone

import pytest
from botocore.exceptions import ClientError

from datamold.errors import (
    BucketConflictError,
    BucketNotFoundError,
    ObjectListError,
    StorageError,
)
from datamold.storage import s3 as s3_module
from datamold.storage.s3 import DEFAULT_PART_SIZE, S3Storage

from tests.conftest import TEST_BUCKET


def _client_error(code: str, operation: str) -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


def _put(client, key: str, body: bytes = b"data") -> None:
    client.put_object(Bucket=TEST_BUCKET, Key=key, Body=body)


class FakeClient:
    """Records calls and replays scripted responses or errors."""

    def __init__(self, **scripted):
        self.scripted = scripted
        self.calls = []

    def _call(self, name, **kwargs):
        self.calls.append((name, kwargs))
        result = self.scripted.get(name)
        if isinstance(result, list):
            result = result.pop(0)
        if isinstance(result, BaseException):
            raise result
        return result or {}

    def head_bucket(self, **kwargs):
        return self._call("head_bucket", **kwargs)

    def create_bucket(self, **kwargs):
        return self._call("create_bucket", **kwargs)

    def list_objects_v2(self, **kwargs):
        return self._call("list_objects_v2", **kwargs)

    def delete_objects(self, **kwargs):
        return self._call("delete_objects", **kwargs)

    def delete_bucket(self, **kwargs):
        return self._call("delete_bucket", **kwargs)


def _listing(keys, token=None):
    response = {
        "Contents": [
            {
                "Key": key,
                "Size": 4,
                "LastModified": datetime(2024, 1, 1, tzinfo=timezone.utc),
                "ETag": '"etag"',
                "StorageClass": "STANDARD",
            }
            for key in keys
        ]
    }
    if token:
        response["NextContinuationToken"] = token
    return response


class TestS3StorageInit:
    """Tests for S3Storage initialization."""

    def test_requires_bucket(self, s3_client):
        with pytest.raises(ValueError, match="bucket is required"):
            S3Storage("", client=s3_client)

    def test_transfer_config_one_part_in_flight(self, s3_client):
        storage = S3Storage(TEST_BUCKET, client=s3_client)

        assert storage.transfer_config.max_concurrency == 1
        assert storage.transfer_config.use_threads is False
        assert storage.transfer_config.multipart_chunksize == DEFAULT_PART_SIZE
        assert storage.transfer_config.multipart_threshold == DEFAULT_PART_SIZE

    def test_builds_client_when_not_given(self, aws_credentials):
        storage = S3Storage(TEST_BUCKET, region="eu-west-1")

        assert storage.client.meta.region_name == "eu-west-1"
        assert storage.scheme == "s3"


class TestCreateBucket:
    """Tests for bucket creation."""

    def test_creates_missing_bucket(self, s3_client):
        storage = S3Storage("new-bucket", region="us-east-1", client=s3_client)
        storage.create_bucket()

        names = [b["Name"] for b in s3_client.list_buckets()["Buckets"]]
        assert "new-bucket" in names

    def test_is_idempotent(self, s3_client):
        storage = S3Storage("new-bucket", region="us-east-1", client=s3_client)
        storage.create_bucket()
        storage.create_bucket()

        names = [b["Name"] for b in s3_client.list_buckets()["Buckets"]]
        assert names.count("new-bucket") == 1

    def test_existing_bucket_untouched(self, s3_storage, s3_client):
        _put(s3_client, "keep.txt")
        s3_storage.create_bucket()

        assert [obj.key for obj in s3_storage.object_list()] == ["keep.txt"]

    def test_aws_sends_location_constraint_outside_us_east_1(self):
        client = FakeClient(head_bucket=_client_error("404", "HeadBucket"))
        S3Storage("b", provider="aws", region="ap-northeast-2", client=client).create_bucket()

        name, params = client.calls[-1]
        assert name == "create_bucket"
        assert params["CreateBucketConfiguration"] == {"LocationConstraint": "ap-northeast-2"}

    @pytest.mark.parametrize(
        "provider,region",
        [("aws", "us-east-1"), ("aws", None), ("minio", "ap-northeast-2"), ("ncp", "kr-standard")],
    )
    def test_no_location_constraint(self, provider, region):
        client = FakeClient(head_bucket=_client_error("NoSuchBucket", "HeadBucket"))
        S3Storage("b", provider=provider, region=region, client=client).create_bucket()

        assert client.calls[-1] == ("create_bucket", {"Bucket": "b"})

    def test_owned_by_you_is_success(self):
        client = FakeClient(
            head_bucket=_client_error("404", "HeadBucket"),
            create_bucket=_client_error("BucketAlreadyOwnedByYou", "CreateBucket"),
        )
        S3Storage("b", client=client).create_bucket()

    def test_owned_by_another_account(self):
        client = FakeClient(
            head_bucket=_client_error("404", "HeadBucket"),
            create_bucket=_client_error("BucketAlreadyExists", "CreateBucket"),
        )

        with pytest.raises(BucketConflictError) as exc_info:
            S3Storage("b", client=client).create_bucket()
        assert exc_info.value.bucket == "b"
        assert exc_info.value.suggestion

    def test_forbidden_head_is_conflict(self):
        client = FakeClient(head_bucket=_client_error("403", "HeadBucket"))

        with pytest.raises(BucketConflictError):
            S3Storage("b", client=client).create_bucket()
        assert [name for name, _ in client.calls] == ["head_bucket"]

    def test_other_create_error_wrapped(self):
        client = FakeClient(
            head_bucket=_client_error("404", "HeadBucket"),
            create_bucket=_client_error("InvalidBucketName", "CreateBucket"),
        )

        with pytest.raises(StorageError) as exc_info:
            S3Storage("b", client=client).create_bucket()
        assert isinstance(exc_info.value.cause, ClientError)


class TestObjectList:
    """Tests for listing."""

    def test_empty_bucket(self, s3_storage):
        assert s3_storage.object_list() == []

    def test_follows_pages_in_order(self, s3_client):
        keys = [f"csv/artifact_{i}.csv" for i in range(7)]
        s3_client.create_bucket(Bucket=TEST_BUCKET)
        for key in keys:
            _put(s3_client, key)

        storage = S3Storage(TEST_BUCKET, client=s3_client, page_size=2)
        objects = storage.object_list()

        assert [obj.key for obj in objects] == sorted(keys)
        assert all(obj.size == 4 for obj in objects)
        assert all(obj.etag for obj in objects)

    def test_page_size_sent_as_max_keys(self):
        client = FakeClient(list_objects_v2=[_listing(["a"], token="t1"), _listing(["b"])])
        objects = S3Storage("b", client=client, page_size=1).object_list()

        assert [obj.key for obj in objects] == ["a", "b"]
        assert client.calls[0][1] == {"Bucket": "b", "MaxKeys": 1}
        assert client.calls[1][1] == {"Bucket": "b", "MaxKeys": 1, "ContinuationToken": "t1"}

    def test_missing_bucket(self, s3_client):
        storage = S3Storage("does-not-exist", client=s3_client)

        with pytest.raises(BucketNotFoundError):
            storage.object_list()

    def test_failure_after_first_page_keeps_partial_list(self):
        client = FakeClient(
            list_objects_v2=[
                _listing(["a", "b"], token="t1"),
                _client_error("InternalError", "ListObjectsV2"),
            ]
        )

        with pytest.raises(ObjectListError) as exc_info:
            S3Storage("b", client=client).object_list()
        assert [obj.key for obj in exc_info.value.objects] == ["a", "b"]
        assert exc_info.value.details["objects_listed"] == 2


class TestDeleteBucket:
    """Tests for emptying and deleting a bucket."""

    @pytest.fixture
    def delete_calls(self, s3_storage, monkeypatch):
        calls = []
        original = s3_storage.client.delete_objects

        def spy(**kwargs):
            calls.append(len(kwargs["Delete"]["Objects"]))
            return original(**kwargs)

        monkeypatch.setattr(s3_storage.client, "delete_objects", spy)
        return calls

    def _bucket_exists(self, client) -> bool:
        try:
            client.head_bucket(Bucket=TEST_BUCKET)
        except ClientError:
            return False
        return True

    def test_deletes_objects_then_bucket(self, s3_storage, s3_client, delete_calls):
        for i in range(5):
            _put(s3_client, f"txt/artifact_{i}.txt")

        s3_storage.delete_bucket()

        assert delete_calls == [5]
        assert not self._bucket_exists(s3_client)

    def test_empty_bucket_sends_no_batches(self, s3_storage, s3_client, delete_calls):
        s3_storage.delete_bucket()

        assert delete_calls == []
        assert not self._bucket_exists(s3_client)

    def test_batches_keys(self, s3_storage, s3_client, delete_calls, monkeypatch):
        monkeypatch.setattr(s3_module, "DELETE_BATCH_SIZE", 2)
        for i in range(5):
            _put(s3_client, f"k{i}")

        s3_storage.delete_bucket()

        assert delete_calls == [2, 2, 1]

    def test_missing_bucket(self, s3_client):
        with pytest.raises(BucketNotFoundError):
            S3Storage("does-not-exist", client=s3_client).delete_bucket()

    def test_per_key_errors_raise(self):
        client = FakeClient(
            list_objects_v2=_listing(["a", "b"]),
            delete_objects={
                "Errors": [{"Key": "b", "Code": "AccessDenied", "Message": "denied"}]
            },
        )

        with pytest.raises(StorageError) as exc_info:
            S3Storage("b", client=client).delete_bucket()
        assert exc_info.value.details["key"] == "b"
        assert "delete_bucket" not in [name for name, _ in client.calls]


class TestStreaming:
    """Tests for open/create through the pipe adapter."""

    def test_create_then_open(self, s3_storage):
        payload = b"hello world\n" * 1000

        with s3_storage.create("txt/artifact_0.txt") as handle:
            for start in range(0, len(payload), 100):
                handle.write(payload[start : start + 100])

        with s3_storage.open("txt/artifact_0.txt") as handle:
            assert handle.read() == payload

    def test_small_pipe_buffer(self, s3_client):
        s3_client.create_bucket(Bucket=TEST_BUCKET)
        storage = S3Storage(TEST_BUCKET, client=s3_client, pipe_buffer=64)
        payload = bytes(range(256)) * 40

        with storage.create("bin") as handle:
            handle.write(payload)
        with storage.open("bin") as handle:
            assert handle.read() == payload

    def test_zero_byte_object(self, s3_storage, s3_client):
        handle = s3_storage.create("empty.txt")
        handle.close()

        head = s3_client.head_object(Bucket=TEST_BUCKET, Key="empty.txt")
        assert head["ContentLength"] == 0
        with s3_storage.open("empty.txt") as reader:
            assert reader.read() == b""

    def test_multipart_upload(self, s3_client):
        s3_client.create_bucket(Bucket=TEST_BUCKET)
        part = 5 * 1024 * 1024
        storage = S3Storage(TEST_BUCKET, client=s3_client, part_size=part)
        payload = b"m" * (part * 2 + 1024)

        with storage.create("big.bin") as handle:
            handle.write(payload)

        head = s3_client.head_object(Bucket=TEST_BUCKET, Key="big.bin")
        assert head["ContentLength"] == len(payload)

    def test_write_to_missing_bucket_fails_on_close(self, s3_client):
        storage = S3Storage("does-not-exist", client=s3_client)
        handle = storage.create("obj")
        handle.write(b"data")

        with pytest.raises(ClientError):
            handle.close()
        assert handle.close() is None

    def test_open_missing_key_fails_on_read(self, s3_storage):
        handle = s3_storage.open("missing.txt")

        with pytest.raises(ClientError):
            handle.read()
        handle.close()

    def test_aborted_write_commits_nothing(self, s3_storage, s3_client):
        with pytest.raises(RuntimeError):
            with s3_storage.create("partial.txt") as handle:
                handle.write(b"half an artifact")
                raise RuntimeError("encoder failed")

        listed = s3_client.list_objects_v2(Bucket=TEST_BUCKET)
        assert listed.get("KeyCount", 0) == 0
