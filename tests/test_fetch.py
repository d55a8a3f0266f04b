import hashlib
import os

import pytest

from cellar.modules.errors import ChecksumMismatch, FetchError
from cellar.modules.fetch import ContentFetcher


@pytest.fixture
def fetcher(tmp_path):
    return ContentFetcher(str(tmp_path / "cache"))


@pytest.fixture
def payload(tmp_path):
    path = tmp_path / "src" / "hello-1.0.tar.gz"
    path.parent.mkdir()
    path.write_bytes(b"not really a tarball")
    return str(path), hashlib.sha256(b"not really a tarball").hexdigest()


def test_fetch_plain_path_and_file_url(fetcher, payload):
    path, sha = payload
    cached = fetcher.fetch([path], sha)
    assert os.path.basename(cached).endswith("--hello-1.0.tar.gz")
    with open(cached, "rb") as fh:
        assert fh.read() == b"not really a tarball"

    os.remove(cached)
    assert fetcher.fetch(["file://" + path], sha.upper()) == cached


def test_cache_hit_skips_download(fetcher, payload):
    path, sha = payload
    cached = fetcher.fetch([path], sha)
    os.remove(path)
    assert fetcher.fetch([path], sha) == cached


def test_corrupt_cache_entry_is_refetched(fetcher, payload):
    path, sha = payload
    cached = fetcher.fetch([path], sha)
    with open(cached, "wb") as fh:
        fh.write(b"garbage")
    assert fetcher.fetch([path], sha) == cached
    with open(cached, "rb") as fh:
        assert fh.read() == b"not really a tarball"


def test_checksum_mismatch_leaves_nothing_behind(fetcher, payload):
    path, _ = payload
    with pytest.raises(ChecksumMismatch) as exc:
        fetcher.fetch([path], "00" * 32)
    assert exc.value.expected == "00" * 32
    assert os.listdir(fetcher.cache_dir) == []


def test_mirrors_are_tried_in_order(fetcher, payload, tmp_path):
    path, sha = payload
    missing = str(tmp_path / "missing.tar.gz")
    cached = fetcher.fetch([missing, path], sha)
    assert os.path.exists(cached)


def test_all_urls_failing(fetcher, tmp_path):
    with pytest.raises(FetchError) as exc:
        fetcher.fetch([str(tmp_path / "a.tgz"), "gopher://example.org/b.tgz"], "00" * 32)
    assert len(exc.value.urls) == 2
    with pytest.raises(FetchError):
        fetcher.fetch([], None)


def test_clean(fetcher, payload):
    path, sha = payload
    fetcher.fetch([path], sha)
    assert fetcher.clean() == 1
    assert os.listdir(fetcher.cache_dir) == []
