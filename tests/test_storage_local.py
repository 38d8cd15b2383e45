"""Tests for the local filesystem storage backend and backend registry."""

import hashlib

import pytest

from datamold.config import StorageConfig
from datamold.errors import BucketConflictError, BucketNotFoundError, ConfigurationError
from datamold.storage import (
    LocalStorage,
    S3Storage,
    get_storage,
    list_backends,
    register_backend,
)
from datamold.storage.base import StorageBackend


class TestLocalStorage:
    """Tests for LocalStorage."""

    def test_create_bucket_idempotent(self, tmp_path):
        storage = LocalStorage(tmp_path, "bucket")
        storage.create_bucket()
        storage.create_bucket()

        assert (tmp_path / "bucket").is_dir()

    def test_create_bucket_conflict_with_file(self, tmp_path):
        (tmp_path / "bucket").write_text("not a directory")

        with pytest.raises(BucketConflictError):
            LocalStorage(tmp_path, "bucket").create_bucket()

    def test_create_and_open(self, local_storage):
        with local_storage.create("csv/artifact_0.csv") as f:
            f.write(b"id,name\n1,a\n")

        with local_storage.open("csv/artifact_0.csv") as f:
            assert f.read() == b"id,name\n1,a\n"

    def test_object_list(self, local_storage):
        for key, body in [("b.txt", b"bb"), ("a/x.txt", b"x"), ("a/y.txt", b"")]:
            with local_storage.create(key) as f:
                f.write(body)

        objects = local_storage.object_list()

        assert [obj.key for obj in objects] == ["a/x.txt", "a/y.txt", "b.txt"]
        assert [obj.size for obj in objects] == [1, 0, 2]
        assert objects[0].etag == f'"{hashlib.md5(b"x").hexdigest()}"'
        assert objects[0].storage_class == "STANDARD"
        assert objects[0].last_modified.tzinfo is not None

    def test_object_list_missing_bucket(self, tmp_path):
        with pytest.raises(BucketNotFoundError):
            LocalStorage(tmp_path, "missing").object_list()

    def test_delete_bucket(self, local_storage):
        with local_storage.create("deep/nested/key.txt") as f:
            f.write(b"data")

        local_storage.delete_bucket()

        assert not local_storage.bucket_dir.exists()

    def test_delete_missing_bucket(self, tmp_path):
        with pytest.raises(BucketNotFoundError):
            LocalStorage(tmp_path, "missing").delete_bucket()

    @pytest.mark.parametrize("key", ["../escape.txt", "a/../../escape.txt"])
    def test_rejects_keys_outside_bucket(self, local_storage, key):
        with pytest.raises(ValueError, match="escapes bucket"):
            local_storage.create(key)


class TestBackendRegistry:
    """Tests for provider registration and lookup."""

    def test_builtin_providers(self):
        assert {"aws", "gcp", "ncp", "minio", "local"} <= set(list_backends())

    def test_local_provider(self, tmp_path):
        storage = get_storage(StorageConfig(provider="local", root=str(tmp_path), bucket="b"))

        assert isinstance(storage, LocalStorage)
        assert storage.bucket_dir == tmp_path.resolve() / "b"

    def test_local_requires_root(self):
        with pytest.raises(ConfigurationError, match="root"):
            get_storage(StorageConfig(provider="local", bucket="b"))

    @pytest.mark.parametrize("provider", ["aws", "gcp", "ncp", "minio"])
    def test_s3_compatible_providers(self, aws_credentials, provider):
        config = StorageConfig(
            provider=provider,
            bucket="b",
            region="ap-northeast-2",
            endpoint_url="http://localhost:9000",
            part_size_mb=16,
            page_size=100,
        )
        storage = get_storage(config)

        assert isinstance(storage, S3Storage)
        assert storage.provider == provider
        assert storage.page_size == 100
        assert storage.transfer_config.multipart_chunksize == 16 * 1024 * 1024
        assert storage.client.meta.endpoint_url == "http://localhost:9000"

    def test_register_custom_backend(self, monkeypatch):
        from datamold import storage as storage_module

        monkeypatch.setattr(storage_module, "BACKEND_REGISTRY", dict(storage_module.BACKEND_REGISTRY))

        class MemoryStorage(StorageBackend):
            scheme = "memory"

            def create_bucket(self):
                pass

            def delete_bucket(self):
                pass

            def object_list(self):
                return []

            def open(self, name):
                raise NotImplementedError

            def create(self, name):
                raise NotImplementedError

        @register_backend("aws")
        def factory(config):
            return MemoryStorage(config.bucket)

        assert isinstance(get_storage(StorageConfig(bucket="b")), MemoryStorage)
