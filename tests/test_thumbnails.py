"""Tests for the thumbnail cache."""

import io
import json
import os
from concurrent.futures import ThreadPoolExecutor

import pytest
from PIL import Image

from conftest import make_image
from discovery import scanner
from discovery.exceptions import BatchTooLargeError, MediaNotFoundError, ThumbnailError
from discovery.identity import media_id_for
from discovery.thumbnails import MANIFEST_NAME, ThumbnailCache, file_fingerprint


@pytest.fixture
def cache(tmp_path):
    return ThumbnailCache(tmp_path / "thumbs", width=40, height=30, quality=80, batch_limit=3)


def test_thumbnail_is_cover_cropped_webp(cache, library):
    source = make_image(library / "A" / "wide.jpg", size=(200, 50))

    thumb = cache.get_thumbnail("m1", source, "image")

    assert thumb == cache.cache_dir / "m1.webp"
    with Image.open(thumb) as im:
        assert im.format == "WEBP"
        assert im.size == (40, 30)


def test_unchanged_file_is_a_cache_hit(cache, library):
    source = make_image(library / "A" / "1.jpg")

    first = cache.get_thumbnail("m1", source, "image")
    second = cache.get_thumbnail("m1", source, "image")

    assert first == second
    assert cache.generated == 1
    assert cache.hits == 1


def test_changed_file_regenerates(cache, library):
    source = make_image(library / "A" / "1.jpg")
    cache.get_thumbnail("m1", source, "image")
    old_fingerprint = cache.entry("m1").fingerprint

    make_image(source, size=(64, 64), color="blue")
    stat = source.stat()
    os.utime(source, ns=(stat.st_atime_ns, stat.st_mtime_ns + 5_000_000_000))

    cache.get_thumbnail("m1", source, "image")

    assert cache.generated == 2
    assert cache.entry("m1").fingerprint == file_fingerprint(source) != old_fingerprint


def test_missing_artifact_regenerates(cache, library):
    source = make_image(library / "A" / "1.jpg")
    thumb = cache.get_thumbnail("m1", source, "image")
    thumb.unlink()

    assert cache.get_thumbnail("m1", source, "image").exists()
    assert cache.generated == 2


def test_manifest_survives_restart(cache, library):
    source = make_image(library / "A" / "1.jpg")
    cache.get_thumbnail("m1", source, "image")

    manifest = json.loads((cache.cache_dir / MANIFEST_NAME).read_text())
    assert manifest[0]["media_id"] == "m1"
    assert manifest[0]["fingerprint"] == file_fingerprint(source)

    reopened = ThumbnailCache(cache.cache_dir, width=40, height=30)
    reopened.get_thumbnail("m1", source, "image")
    assert reopened.generated == 0
    assert reopened.hits == 1


def test_corrupt_manifest_starts_empty(tmp_path):
    cache_dir = tmp_path / "thumbs"
    cache_dir.mkdir()
    (cache_dir / MANIFEST_NAME).write_text("{not json")

    assert ThumbnailCache(cache_dir).stats()["total_cached"] == 0


def test_missing_source_is_not_found(cache, library):
    with pytest.raises(MediaNotFoundError):
        cache.get_thumbnail("m1", library / "A" / "gone.jpg", "image")


def test_broken_image_is_thumbnail_error(cache, library):
    broken = library / "A" / "broken.jpg"
    broken.parent.mkdir(parents=True)
    broken.write_bytes(b"definitely not a jpeg")

    with pytest.raises(ThumbnailError):
        cache.get_thumbnail("m1", broken, "image")
    assert not list(cache.cache_dir.glob("*.tmp"))


def test_video_uses_extracted_frame(cache, library, monkeypatch):
    video = library / "A" / "clip.mp4"
    video.parent.mkdir(parents=True)
    video.write_bytes(b"\x00" * 64)

    frame = io.BytesIO()
    Image.new("RGB", (160, 90), color="purple").save(frame, format="PNG")
    calls = []

    def fake_extract(path):
        calls.append(path)
        return frame.getvalue()

    monkeypatch.setattr(cache, "_extract_video_frame", fake_extract)

    thumb = cache.get_thumbnail("v1", video, "video")

    assert calls == [video]
    with Image.open(thumb) as im:
        assert im.size == (40, 30)


def test_video_without_ffmpeg_is_thumbnail_error(cache, library, monkeypatch):
    video = library / "A" / "clip.mp4"
    video.parent.mkdir(parents=True)
    video.write_bytes(b"\x00" * 64)
    monkeypatch.setattr("discovery.thumbnails.shutil.which", lambda name: None)

    with pytest.raises(ThumbnailError):
        cache.get_thumbnail("v1", video, "video")


def test_concurrent_requests_generate_once(cache, library):
    source = make_image(library / "A" / "1.jpg", size=(400, 400))

    with ThreadPoolExecutor(max_workers=8) as pool:
        paths = list(pool.map(lambda _: cache.get_thumbnail("m1", source, "image"), range(16)))

    assert len(set(paths)) == 1
    assert cache.generated == 1
    assert cache.hits == 15


def test_batch_reports_each_item(db, config, sample_library, cache):
    broken = sample_library / "B" / "broken.jpg"
    broken.write_bytes(b"nope")
    scanner.index_library(config)

    good_id = media_id_for(sample_library / "A" / "1.jpg")
    broken_id = media_id_for(broken)

    results = cache.batch_get([good_id, "0000000000000000", broken_id])

    assert [r.media_id for r in results] == [good_id, "0000000000000000", broken_id]
    assert [r.status for r in results] == ["ok", "not_found", "error"]
    assert results[0].path.exists()
    assert results[2].error


def test_batch_limits(cache):
    with pytest.raises(BatchTooLargeError):
        cache.batch_get(["a", "b", "c", "d"])
    with pytest.raises(ValueError):
        cache.batch_get([])


def test_get_for_media_unknown_id(db, cache):
    with pytest.raises(MediaNotFoundError):
        cache.get_for_media("ffffffffffffffff")


def test_generate_missing(db, config, sample_library, cache):
    scanner.index_library(config)

    first = cache.generate_missing()
    second = cache.generate_missing()

    assert first["generated"] == 3
    assert second == {"generated": 0, "cached": 3, "failed": 0, "missing": 0}


def test_remove_cleanup_and_clear(cache, library):
    source = make_image(library / "A" / "1.jpg")
    cache.get_thumbnail("keep", source, "image")
    cache.get_thumbnail("drop", source, "image")
    (cache.cache_dir / "stray.webp").write_bytes(b"x")

    assert cache.cleanup_orphans({"keep", "drop"}) == 1
    assert cache.remove(["drop"]) == 1
    assert cache.entry("drop") is None
    assert (cache.cache_dir / MANIFEST_NAME).exists()

    assert cache.clear() == 1
    assert cache.stats()["total_cached"] == 0
    assert (cache.cache_dir / MANIFEST_NAME).exists()


def test_stats_ignores_partial_renders(cache, library):
    source = make_image(library / "A" / "1.jpg")
    thumb = cache.get_thumbnail("m1", source, "image")
    (cache.cache_dir / "m2.webp.tmp").write_bytes(b"x" * 4096)

    assert cache.stats()["size_bytes"] == thumb.stat().st_size
    assert cache.clear() == 1
    assert (cache.cache_dir / "m2.webp.tmp").exists()


def test_stats_tolerates_files_vanishing_while_listing(cache, library, monkeypatch):
    thumb = cache.get_thumbnail("m1", make_image(library / "A" / "1.jpg"), "image")

    gone = cache.cache_dir / "gone.webp"

    class Listing:
        def iterdir(self):
            return iter([thumb, gone])

    monkeypatch.setattr(cache, "cache_dir", Listing())
    monkeypatch.setattr(ThumbnailCache, "_is_artifact", staticmethod(lambda path: True))

    assert cache.stats()["size_bytes"] == thumb.stat().st_size


def test_stats_while_generating(cache, library):
    source = make_image(library / "A" / "1.jpg", size=(1200, 900))

    with ThreadPoolExecutor(max_workers=4) as pool:
        futures = [
            pool.submit(cache.get_thumbnail, f"m{i}", source, "image") for i in range(24)
        ]
        while not all(f.done() for f in futures):
            cache.stats()
        for future in futures:
            future.result()

    assert cache.stats()["total_cached"] == 24


def test_locks_are_released_with_their_entries(cache, library):
    source = make_image(library / "A" / "1.jpg")
    for media_id in ("a", "b", "c", "d"):
        cache.get_thumbnail(media_id, source, "image")
    assert set(cache._locks) == {"a", "b", "c", "d"}

    cache.remove(["a"])
    assert set(cache._locks) == {"b", "c", "d"}

    cache.cleanup_orphans({"b", "c"})
    assert set(cache._locks) == {"b", "c"}

    held = cache._lock_for("b")
    with held:
        cache.clear()
        assert set(cache._locks) == {"b"}
    cache.clear()
    assert cache._locks == {}
