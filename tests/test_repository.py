"""Tests for the baseline repository and its JSON index."""

import hashlib
import json
import time
from unittest.mock import patch

import pytest

from baseline_engine.baseline.repository import (
    BaselineRepository,
    baseline_id,
    compute_fingerprint,
)
from baseline_engine.models.baseline import BaselineQuery, QueryRepository
from baseline_engine.storage.memory import InMemoryStorage

FIXED_UTC = time.struct_time((2024, 1, 2, 3, 4, 5, 1, 2, 0))


class FailingDeleteStorage(InMemoryStorage):
    def delete_file(self, path: str) -> None:
        raise RuntimeError("bucket is read-only")


class TestIdentity:

    def test_id_is_deterministic(self, baseline_data_factory):
        a = baseline_data_factory(updated_at=1)
        b = baseline_data_factory(updated_at=99)
        assert baseline_id(a) == baseline_id(b)
        assert len(baseline_id(a)) == 12

    def test_id_changes_with_commit(self, baseline_data_factory):
        assert baseline_id(baseline_data_factory(commit="a")) != baseline_id(baseline_data_factory(commit="b"))

    def test_resave_same_context_does_not_duplicate(self, repository, baseline_data_factory):
        first = repository.save(baseline_data_factory(updated_at=10))
        second = repository.save(baseline_data_factory(updated_at=20))
        assert first.id == second.id
        assert repository.count() == 1
        assert second.created_at == 10
        assert second.updated_at == 20

    def test_updated_at_never_goes_backwards(self, repository, baseline_data_factory):
        repository.save(baseline_data_factory(updated_at=50))
        again = repository.save(baseline_data_factory(updated_at=5))
        assert again.updated_at == 50


class TestSave:

    def test_assigns_content_addressed_storage_path(self, repository, baseline_data_factory):
        data = baseline_data_factory()
        baseline = repository.save(data)
        assert baseline.storage.path == f"baselines/{data.fingerprint}/screenshot.png"
        assert baseline.storage.provider == "memory"

    def test_persists_whole_index_document(self, repository, storage, baseline_data_factory):
        repository.save(baseline_data_factory(route="/a"))
        repository.save(baseline_data_factory(route="/b"))

        index = json.loads(storage.download_file("baselines/index.json"))
        assert index["version"] == "1.0"
        assert index["count"] == 2
        assert index["updatedAt"]
        assert {b["route"] for b in index["baselines"]} == {"/a", "/b"}
        assert "updatedAt" in index["baselines"][0]

    def test_index_reloads_on_initialize(self, storage, baseline_data_factory):
        repo = BaselineRepository(storage)
        repo.initialize()
        saved = repo.save(baseline_data_factory(tags=["stable"], pr_number=12))

        reloaded = BaselineRepository(storage)
        reloaded.initialize()
        baseline = reloaded.get(saved.id)
        assert baseline == saved
        assert baseline.metadata.pr_number == 12

    def test_corrupt_index_starts_empty(self, storage):
        storage.upload_file("baselines/index.json", b"{not json")
        repo = BaselineRepository(storage)
        repo.initialize()
        assert repo.count() == 0


class TestFind:

    @pytest.fixture
    def populated(self, repository, baseline_data_factory):
        repository.save(baseline_data_factory(route="/", commit="c1", updated_at=1, branch="main"))
        repository.save(baseline_data_factory(route="/", commit="c2", updated_at=3, branch="feature", tags=["stable"]))
        repository.save(baseline_data_factory(route="/about", commit="c3", updated_at=2, pr_number=7))
        repository.save(baseline_data_factory(route="/", viewport="375x667", commit="c4", updated_at=4))
        return repository

    def test_empty_query_matches_all_sorted_desc(self, populated):
        results = populated.find(BaselineQuery())
        assert [b.metadata.commit for b in results] == ["c4", "c2", "c3", "c1"]

    def test_filters_are_anded(self, populated):
        results = populated.find(BaselineQuery(route="/", viewport="1920x1080"))
        assert [b.metadata.commit for b in results] == ["c2", "c1"]

    def test_filter_by_branch(self, populated):
        results = populated.find(BaselineQuery(repository=QueryRepository(owner="acme", branch="feature")))
        assert [b.metadata.commit for b in results] == ["c2"]

    def test_filter_by_commit_pr_and_tags(self, populated):
        assert populated.find(BaselineQuery(commit="c3"))[0].route == "/about"
        assert populated.find(BaselineQuery(pr_number=7))[0].metadata.commit == "c3"
        assert [b.metadata.commit for b in populated.find(BaselineQuery(tags=["stable"]))] == ["c2"]

    def test_pagination(self, populated):
        page = populated.find(BaselineQuery(offset=1, limit=2))
        assert [b.metadata.commit for b in page] == ["c2", "c3"]

    def test_default_limit_is_ten(self, repository, baseline_data_factory):
        for i in range(12):
            repository.save(baseline_data_factory(commit=f"c{i}", updated_at=i))
        assert len(repository.find(BaselineQuery())) == 10


class TestDelete:

    def test_removes_entry_and_image(self, repository, storage, baseline_data_factory, white_png):
        path = repository.save_image(white_png, {"route": "/"})
        baseline = repository.save(baseline_data_factory())
        assert baseline.storage.path == path

        assert repository.delete(baseline.id) is True
        assert repository.get(baseline.id) is None
        assert path not in storage.files
        assert json.loads(storage.download_file("baselines/index.json"))["count"] == 0

    def test_unknown_id(self, repository):
        assert repository.delete("nope") is False

    def test_image_failure_does_not_block_index(self, baseline_data_factory, white_png):
        storage = FailingDeleteStorage()
        repo = BaselineRepository(storage)
        repo.initialize()
        repo.save_image(white_png)
        baseline = repo.save(baseline_data_factory())

        assert repo.delete(baseline.id) is True
        assert repo.get(baseline.id) is None
        assert json.loads(storage.download_file("baselines/index.json"))["count"] == 0

    def test_keeps_image_shared_with_another_baseline(self, repository, storage, baseline_data_factory, white_png):
        path = repository.save_image(white_png)
        first = repository.save(baseline_data_factory(commit="c1"))
        repository.save(baseline_data_factory(commit="c2"))

        repository.delete(first.id)
        assert path in storage.files


class TestImages:

    def test_fingerprint_matches_stored_bytes(self, repository, baseline_data_factory, make_png):
        image = make_png(blocks=((10, 10, 20, 20, (0, 0, 0, 255)),))
        repository.save_image(image, {"route": "/"})
        baseline = repository.save(baseline_data_factory(image=image))

        stored = repository.get_image(baseline)
        assert stored == image
        assert baseline.fingerprint == hashlib.sha256(stored).hexdigest()

    def test_save_image_metadata(self, repository, storage, white_png):
        path = repository.save_image(white_png, {"route": "/x", "prNumber": 3})
        meta = storage.metadata[path]
        assert meta["contentType"] == "image/png"
        assert meta["metadata"]["fingerprint"] == compute_fingerprint(white_png)
        assert meta["metadata"]["prNumber"] == "3"
        assert "uploadedAt" in meta["metadata"]

    def test_get_image_missing_raises(self, repository, baseline_data_factory):
        baseline = repository.save(baseline_data_factory())
        with pytest.raises(FileNotFoundError):
            repository.get_image(baseline)


class TestTimestamps:

    def test_index_and_upload_times_are_utc(self, repository, storage, baseline_data_factory, white_png):
        with patch("baseline_engine.baseline.repository.time.gmtime", return_value=FIXED_UTC):
            repository.save(baseline_data_factory())
            path = repository.save_image(white_png, {"route": "/x"})

        index = json.loads(storage.download_file("baselines/index.json"))
        assert index["updatedAt"] == "2024-01-02T03:04:05Z"
        assert storage.metadata[path]["metadata"]["uploadedAt"] == "2024-01-02T03:04:05Z"
