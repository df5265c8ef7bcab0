import json
import threading
from datetime import date
import pytest
from PIL import Image
from photo_frame.acquisition import pipeline as pipeline_module
from photo_frame.acquisition.pipeline import AcquisitionPipeline
from photo_frame.acquisition.transform import resize_image
from photo_frame.config import ScanConfig, ScanFolder
from photo_frame.exceptions import (
    ConcurrentOperationError,
    MountError,
    SourceMissingError,
    TransientIOError,
)
from photo_frame.scanning.filesystem import DirectoryScanner
from photo_frame.share.client import ShareClient
from conftest import make_image

TODAY = date(2026, 10, 19)

@pytest.fixture
def catalog(db_ops, share_root):
    """Five photos on the share, catalogued by a scan."""
    for i in range(5):
        make_image(share_root / "album" / f"photo{i}.jpg")
    DirectoryScanner(db_ops, share_root).scan(ScanConfig(subfolders=[ScanFolder("album")]))
    assert db_ops.total_count() == 5
    return db_ops

def _pipeline(db_ops, photos_dir, share_root, guard, settings_path=None, guardian=None):
    return AcquisitionPipeline(
        db_ops, photos_dir, ShareClient(share_root),
        guardian=guardian, settings_path=settings_path, guard=guard,
        today=lambda: TODAY,
    )

def _served(photos_dir):
    return sorted(p.name for p in photos_dir.iterdir())

def test_fetch_three_of_five(catalog, photos_dir, share_root, fetch_guard):
    result = _pipeline(catalog, photos_dir, share_root, fetch_guard).fetch_photos(3)

    assert result.fetched == 3
    assert result.total == 3
    assert result.same_day_fetched == 0
    assert len(_served(photos_dir)) == 3
    assert not any(n.startswith("temp-") for n in _served(photos_dir))
    assert catalog.aggregate_stats().active_local_copies == 3
    assert len(catalog.random_unacquired(10)) == 2

def test_fetch_clears_previous_cycle(catalog, photos_dir, share_root, fetch_guard):
    (photos_dir / "stale.jpg").write_bytes(b"old")
    (photos_dir / "keep.txt").write_text("not an image")
    p = _pipeline(catalog, photos_dir, share_root, fetch_guard)

    p.fetch_photos(2)
    first = set(_served(photos_dir))
    p.fetch_photos(2)
    second = set(_served(photos_dir))

    assert "stale.jpg" not in first
    assert "keep.txt" in second
    assert len(second - {"keep.txt"}) == 2
    assert not (first & second) - {"keep.txt"}

def test_fetch_with_nothing_left_does_not_touch_share(db_ops, photos_dir, share_root, fetch_guard):
    class ExplodingGuardian:
        def ensure_mounted_and_verified(self):
            raise AssertionError("share must not be touched")

    (photos_dir / "old.jpg").write_bytes(b"x")
    p = _pipeline(db_ops, photos_dir, share_root, fetch_guard, guardian=ExplodingGuardian())
    result = p.fetch_photos(5)

    assert (result.fetched, result.same_day_fetched, result.total) == (0, 0, 0)
    assert result.message == "No new photos to fetch"
    assert _served(photos_dir) == []

def test_mount_error_aborts_fetch(catalog, photos_dir, share_root, fetch_guard):
    class DownGuardian:
        def ensure_mounted_and_verified(self):
            raise MountError("remount failed")

    p = _pipeline(catalog, photos_dir, share_root, fetch_guard, guardian=DownGuardian())
    with pytest.raises(MountError):
        p.fetch_photos(3)
    assert not p.is_fetch_in_progress
    assert catalog.aggregate_stats().active_local_copies == 0

def test_missing_source_is_soft_deleted_and_not_retried(catalog, photos_dir, share_root, fetch_guard, monkeypatch):
    selected = catalog.random_unacquired(3)
    monkeypatch.setattr(catalog, "random_unacquired", lambda count: selected)
    (share_root / selected[2].path).unlink()

    result = _pipeline(catalog, photos_dir, share_root, fetch_guard).fetch_photos(3)
    assert result.fetched == 2
    assert result.total == 3

    deleted = catalog.list_combined(deleted_only=True)
    assert [e.source_photo_id for e in deleted] == [selected[2].id]

    monkeypatch.undo()
    remaining = {p.id for p in catalog.random_unacquired(10)}
    assert selected[2].id not in remaining
    assert len(remaining) == 2

def test_transient_error_skips_candidate(catalog, photos_dir, share_root, fetch_guard):
    selected = catalog.random_unacquired(5)
    (share_root / selected[0].path).write_bytes(b"this is not a jpeg")

    result = _pipeline(catalog, photos_dir, share_root, fetch_guard).fetch_photos(5)
    assert result.fetched == 4
    assert len(_served(photos_dir)) == 4
    # Not marked deleted: it may be retried by a later run
    assert catalog.list_combined(deleted_only=True) == []
    assert [p.id for p in catalog.random_unacquired(10)] == [selected[0].id]

def test_count_defaults_to_settings(catalog, photos_dir, share_root, fetch_guard, tmp_path):
    settings = tmp_path / "settings.json"
    settings.write_text(json.dumps({"photosPerDay": 2}))
    result = _pipeline(catalog, photos_dir, share_root, fetch_guard, settings_path=settings).fetch_photos()
    assert result.fetched == 2

def test_same_day_with_no_matches(catalog, photos_dir, share_root, fetch_guard, tmp_path):
    settings = tmp_path / "settings.json"
    settings.write_text(json.dumps({"photosPerDay": 3, "sameDayPhotos": 2}))

    result = _pipeline(catalog, photos_dir, share_root, fetch_guard, settings_path=settings).fetch_photos()
    assert result.fetched == 3
    assert result.same_day_fetched == 0

def _same_day_catalog(db_ops, share_root):
    names = [f"IMG_2019{TODAY:%m%d}_0900.jpg", f"IMG_2021{TODAY:%m%d}_1000.jpg", "IMG_20200101_0800.jpg"]
    for name in names:
        make_image(share_root / "old" / name)
    DirectoryScanner(db_ops, share_root).scan(ScanConfig(subfolders=[ScanFolder("old")]))
    return names

def test_same_day_phase_resurfaces_previous_years(db_ops, photos_dir, share_root, fetch_guard, tmp_path):
    names = _same_day_catalog(db_ops, share_root)
    settings = tmp_path / "settings.json"
    settings.write_text(json.dumps({"sameDayPhotos": 5}))
    p = _pipeline(db_ops, photos_dir, share_root, fetch_guard, settings_path=settings)

    # First cycle downloads everything; nothing older than the run exists yet
    first = p.fetch_photos(3)
    assert (first.fetched, first.same_day_fetched) == (3, 0)

    # A cycle with no unacquired photos ends early, so add one
    make_image(share_root / "old" / "new.jpg")
    DirectoryScanner(db_ops, share_root).scan(ScanConfig(subfolders=[ScanFolder("old")]))
    second = p.fetch_photos(3)

    assert second.fetched == 1
    assert second.same_day_fetched == 2
    served = _served(photos_dir)
    assert f"sameday-{names[0][:-4]}.jpg" in served
    assert f"sameday-{names[1][:-4]}.jpg" in served
    assert len(served) == 3

def test_same_day_missing_source_is_soft_deleted(db_ops, photos_dir, share_root, fetch_guard, tmp_path):
    names = _same_day_catalog(db_ops, share_root)
    settings = tmp_path / "settings.json"
    settings.write_text(json.dumps({"sameDayPhotos": 5}))
    p = _pipeline(db_ops, photos_dir, share_root, fetch_guard, settings_path=settings)
    p.fetch_photos(3)

    (share_root / "old" / names[0]).unlink()
    make_image(share_root / "old" / "new.jpg")
    DirectoryScanner(db_ops, share_root).scan(ScanConfig(subfolders=[ScanFolder("old")]))

    result = p.fetch_photos(3)
    assert result.fetched == 1
    assert result.same_day_fetched == 1
    deleted = db_ops.list_combined(deleted_only=True)
    assert [e.file_name for e in deleted] == [names[0]]

def test_same_day_failure_keeps_regular_results(catalog, photos_dir, share_root, fetch_guard, tmp_path, monkeypatch):
    settings = tmp_path / "settings.json"
    settings.write_text(json.dumps({"sameDayPhotos": 2}))

    def broken(*args, **kwargs):
        raise RuntimeError("database is locked")

    monkeypatch.setattr(catalog, "same_day_across_years", broken)
    result = _pipeline(catalog, photos_dir, share_root, fetch_guard, settings_path=settings).fetch_photos(2)
    assert result.fetched == 2
    assert result.same_day_fetched == 0

def test_concurrent_fetch_is_rejected(catalog, photos_dir, share_root, fetch_guard, monkeypatch):
    entered = threading.Event()
    release = threading.Event()
    real_resize = pipeline_module.resize_image

    def slow_resize(src, dest, *args, **kwargs):
        entered.set()
        release.wait(5)
        return real_resize(src, dest, *args, **kwargs)

    monkeypatch.setattr(pipeline_module, "resize_image", slow_resize)
    p = _pipeline(catalog, photos_dir, share_root, fetch_guard)

    results = []
    worker = threading.Thread(target=lambda: results.append(p.fetch_photos(1)))
    worker.start()
    assert entered.wait(5)

    assert p.is_fetch_in_progress
    with pytest.raises(ConcurrentOperationError):
        p.fetch_photos(1)

    release.set()
    worker.join(5)
    assert results[0].fetched == 1
    assert not p.is_fetch_in_progress

    # Guard is free again
    assert p.fetch_photos(1).fetched == 1

def test_guard_released_after_failure(catalog, photos_dir, share_root, fetch_guard, monkeypatch):
    p = _pipeline(catalog, photos_dir, share_root, fetch_guard)

    def boom():
        raise OSError("disk full")

    monkeypatch.setattr(p, "clear_serving_directory", boom)
    with pytest.raises(OSError):
        p.fetch_photos(1)
    assert not p.is_fetch_in_progress

    monkeypatch.undo()
    assert p.fetch_photos(1).fetched == 1

def test_local_names_are_unique_within_a_cycle(db_ops, photos_dir, share_root, fetch_guard):
    make_image(share_root / "a" / "same.jpg")
    make_image(share_root / "b" / "same.jpg")
    DirectoryScanner(db_ops, share_root).scan(ScanConfig(subfolders=[ScanFolder("a"), ScanFolder("b")]))

    result = _pipeline(db_ops, photos_dir, share_root, fetch_guard).fetch_photos(2)
    assert result.fetched == 2
    served = _served(photos_dir)
    assert len(served) == 2
    assert all(n.endswith("-same.jpg") for n in served)

def test_resize_never_upscales(tmp_path):
    small = make_image(tmp_path / "small.png", size=(300, 200))
    out = resize_image(small, tmp_path / "small.jpg", max_width=1000)
    with Image.open(out) as im:
        assert im.size == (300, 200)
        assert im.format == "JPEG"

def test_resize_keeps_aspect_ratio(tmp_path):
    big = make_image(tmp_path / "big.jpg", size=(4000, 3000))
    out = resize_image(big, tmp_path / "out.jpg", max_width=1920)
    with Image.open(out) as im:
        assert im.size == (1920, 1440)

def test_resize_error_classes(tmp_path):
    with pytest.raises(SourceMissingError):
        resize_image(tmp_path / "missing.jpg", tmp_path / "out.jpg")

    junk = tmp_path / "junk.jpg"
    junk.write_bytes(b"nope")
    with pytest.raises(TransientIOError):
        resize_image(junk, tmp_path / "out.jpg")
    assert not (tmp_path / "out.jpg").exists()

def test_share_client_resolves_relative_and_absolute(share_root):
    client = ShareClient(share_root)
    expected = share_root / "Photos" / "a.jpg"
    assert client.resolve("Photos/a.jpg") == expected
    assert client.resolve("/Photos/a.jpg") == expected
    assert client.resolve(str(expected)) == expected

def test_share_client_download_errors(share_root, tmp_path):
    client = ShareClient(share_root)
    with pytest.raises(SourceMissingError):
        client.download("gone.jpg", tmp_path / "out" / "gone.jpg")

    make_image(share_root / "here.jpg")
    dest = client.download("here.jpg", tmp_path / "out" / "here.jpg")
    assert dest.exists()
