from pathlib import Path
import random

import pytest

from skyloft.core.catalog import CatalogStore
from skyloft.core.disliked import DislikedStore
from skyloft.core.errors import NotFoundError


def _ids(records):
    return [r.id for r in records]


def test_insert_places_records_most_recent_first(catalog, record_factory):
    middle = record_factory(minutes=5)
    oldest = record_factory(minutes=1)
    newest = record_factory(minutes=9)
    for record in (middle, oldest, newest):
        assert catalog.insert(record)

    assert _ids(catalog.view) == [newest.id, middle.id, oldest.id]


def test_insert_duplicate_id_fails(catalog, record_factory):
    record = record_factory()
    assert catalog.insert(record)
    assert not catalog.insert(record)
    assert catalog.count == 1


def test_load_all_prunes_missing_files_without_touching_others(catalog, record_factory, database):
    kept = record_factory(minutes=2)
    missing = record_factory(minutes=1)
    catalog.insert(kept)
    catalog.insert(missing)
    Path(missing.local_path).unlink()

    view = catalog.load_all()

    assert _ids(view) == [kept.id]
    assert database.fetch(missing.id) is None
    assert Path(kept.local_path).exists()


def test_disliked_records_hidden_but_still_indexed(catalog, record_factory, database, paths):
    liked = record_factory(minutes=2)
    disliked = record_factory(minutes=1)
    catalog.insert(liked)
    catalog.insert(disliked)

    assert catalog.dislike(disliked.id)
    assert _ids(catalog.view) == [liked.id]
    assert database.fetch(disliked.id) is not None

    # Survives a fresh store over the same files
    reopened = CatalogStore(database, DislikedStore(paths.disliked), paths)
    assert _ids(reopened.load_all()) == [liked.id]

    assert reopened.undislike(disliked.id)
    assert _ids(reopened.view) == [liked.id, disliked.id]


def test_view_after_load_matches_existing_non_disliked(catalog, record_factory):
    rng = random.Random(7)
    live = {}
    for step in range(30):
        action = rng.choice(["insert", "insert", "delete", "unlink", "dislike"])
        if action == "insert" or not live:
            record = record_factory(minutes=step)
            catalog.insert(record)
            live[record.id] = record
            continue
        target = rng.choice(sorted(live))
        if action == "delete":
            catalog.delete(target)
            live.pop(target)
        elif action == "unlink":
            Path(live[target].local_path).unlink(missing_ok=True)
        else:
            catalog.dislike(target)

    view = catalog.load_all()

    expected = {
        rid for rid, r in live.items()
        if Path(r.local_path).exists() and not catalog.is_disliked(rid)
    }
    assert set(_ids(view)) == expected


def test_delete_removes_row_and_files(catalog, record_factory, database):
    record = record_factory(with_thumbnail=True)
    catalog.insert(record)
    removed = []
    catalog.record_removed.connect(removed.append)

    assert catalog.delete(record.id)

    assert database.fetch(record.id) is None
    assert not Path(record.local_path).exists()
    assert not Path(record.thumbnail_path).exists()
    assert removed == [record.id]


def test_delete_unknown_id_returns_false(catalog):
    assert not catalog.delete("does-not-exist")


def test_search_is_case_insensitive_over_prompt_and_author(catalog, record_factory):
    catalog.insert(record_factory(prompt="Golden Hour over dunes"))
    catalog.insert(record_factory(author="NightOwl"))
    catalog.insert(record_factory(prompt="rain"))

    assert len(catalog.search("golden")) == 1
    assert len(catalog.search("nightowl")) == 1
    assert len(catalog.search("")) == 3


def test_favorite_and_play_count(catalog, record_factory):
    record = record_factory()
    catalog.insert(record)

    assert catalog.toggle_favorite(record.id)
    assert catalog.increment_play_count(record.id)

    current = catalog.get(record.id)
    assert current.favorite is True
    assert current.play_count == 1
    assert current.last_played_at is not None
    assert _ids(catalog.list_favorites()) == [record.id]

    assert catalog.toggle_favorite(record.id)
    assert catalog.list_favorites() == []


def test_orphan_cleanup_refuses_empty_index(catalog, paths):
    stray = paths.videos / "stray.mp4"
    stray.write_bytes(b"x")

    assert catalog.cleanup_orphaned_files() == 0
    assert stray.exists()


def test_orphan_cleanup_removes_only_unreferenced_and_is_idempotent(catalog, record_factory, paths):
    record = record_factory(with_thumbnail=True)
    catalog.insert(record)
    stray_video = paths.videos / "stray.mp4"
    stray_thumb = paths.thumbnails / "stray.jpg"
    partial = paths.videos / "pending.mp4.part"
    for path in (stray_video, stray_thumb, partial):
        path.write_bytes(b"x")

    assert catalog.cleanup_orphaned_files() == 2
    assert catalog.cleanup_orphaned_files() == 0

    assert Path(record.local_path).exists()
    assert Path(record.thumbnail_path).exists()
    assert partial.exists()
    assert not stray_video.exists() and not stray_thumb.exists()


def test_enforce_max_count_deletes_oldest(catalog, record_factory):
    records = [record_factory(minutes=i) for i in range(5)]
    for record in records:
        catalog.insert(record)

    deleted = catalog.enforce_max_count(3)

    assert set(deleted) == {records[0].id, records[1].id}
    assert _ids(catalog.view) == [records[4].id, records[3].id, records[2].id]


def test_clear_all_and_storage_total(catalog, record_factory):
    first = record_factory()
    second = record_factory(minutes=1)
    catalog.insert(first)
    catalog.insert(second)

    assert catalog.total_storage_bytes == 256
    assert catalog.clear_all() == 2
    assert catalog.view == ()
    assert not Path(first.local_path).exists()


def test_view_changed_emitted_on_mutation(catalog, record_factory):
    views = []
    catalog.view_changed.connect(views.append)
    record = record_factory()

    catalog.insert(record)
    catalog.dislike(record.id)

    assert len(views) == 2
    assert views[-1] == ()


def test_require_raises_for_unknown_id(catalog, record_factory):
    record = record_factory(minutes=1)
    catalog.insert(record)

    assert catalog.require(record.id) == record
    with pytest.raises(NotFoundError):
        catalog.require("nope")


def test_orphan_cleanup_spares_claimed_files_until_released(catalog, record_factory, paths):
    catalog.insert(record_factory())
    claimed = [paths.videos / "incoming.mp4", paths.thumbnails / "incoming.jpg"]
    for path in claimed:
        path.write_bytes(b"x")

    catalog.claim_paths(claimed)
    assert catalog.cleanup_orphaned_files() == 0
    assert all(path.exists() for path in claimed)

    catalog.release_paths(claimed)
    assert catalog.claimed_paths == frozenset()
    assert catalog.cleanup_orphaned_files() == 2


def test_clear_disliked_restores_hidden_records(catalog, record_factory):
    kept = record_factory(minutes=1)
    hidden = record_factory(minutes=2)
    catalog.insert(kept)
    catalog.insert(hidden)
    catalog.dislike(hidden.id)
    assert _ids(catalog.view) == [kept.id]

    catalog.clear_disliked()

    assert _ids(catalog.view) == [hidden.id, kept.id]
    assert catalog.disliked_count == 0
    assert not catalog.is_disliked(hidden.id)
