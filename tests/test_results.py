"""Tests for the on-disk result store."""

import os
import time
import zipfile

import pytest

from simhub.core.errors import NotFoundError, ValidationError
from simhub.storage.results import ResultStore


@pytest.fixture
def store(tmp_path):
    return ResultStore(str(tmp_path / "data"), ttl_hours=1)


def _age(path, hours):
    stamp = time.time() - hours * 3600
    os.utime(path, (stamp, stamp))


def test_layout(store):
    for sub in ("inputs", "results", "archives"):
        assert os.path.isdir(os.path.join(store.base_dir, sub))
    assert store.result_path_for("abc") == "results/abc"
    assert store.get_workdir("abc") == os.path.join(store.base_dir, "results", "abc")


@pytest.mark.parametrize("result_path", ["../outside", "/etc", ".", "results/../../x"])
def test_resolve_rejects_escapes(store, result_path):
    with pytest.raises(ValidationError):
        store.resolve(result_path)


def test_build_archive(store):
    workdir = store.get_workdir("job-1")
    os.makedirs(os.path.join(workdir, "0.5"))
    with open(os.path.join(workdir, "0.5", "U"), "w") as fh:
        fh.write("velocity")
    with open(os.path.join(workdir, "solver.log"), "w") as fh:
        fh.write("End")

    archive = store.build_archive("job-1", "results/job-1")

    with zipfile.ZipFile(archive) as zf:
        assert sorted(zf.namelist()) == ["0.5/U", "solver.log"]
        assert zf.read("0.5/U") == b"velocity"


def test_build_archive_missing_results(store):
    with pytest.raises(NotFoundError):
        store.build_archive("job-2", "results/job-2")


def test_discard_input(store):
    input_dir = store.get_input_dir("job-1")
    open(os.path.join(input_dir, "beam.inp"), "w").close()
    store.discard_input("job-1")
    assert not os.path.exists(input_dir)
    store.discard_input("job-1")


def test_cleanup_expired(store):
    kept = store.get_workdir("kept")
    stale = store.get_workdir("stale")
    fresh = store.get_workdir("fresh")
    for path in (kept, stale, fresh):
        os.makedirs(path)
    _age(kept, 2)
    _age(stale, 2)

    live_input = store.get_input_dir("kept")
    dead_input = store.get_input_dir("gone")
    _age(live_input, 2)
    _age(dead_input, 2)

    removed = store.cleanup_expired(referenced_paths=["results/kept", None], live_job_ids=["kept"])

    assert removed == 2
    assert os.path.isdir(kept)
    assert os.path.isdir(fresh)
    assert not os.path.exists(stale)
    assert os.path.isdir(live_input)
    assert not os.path.exists(dead_input)
