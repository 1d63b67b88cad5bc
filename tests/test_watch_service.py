import time
from pathlib import Path

import pytest
from watchdog.events import (
    DirDeletedEvent,
    DirModifiedEvent,
    DirMovedEvent,
    FileCreatedEvent,
    FileDeletedEvent,
    FileModifiedEvent,
    FileMovedEvent,
)

from event.watch_event import EventKind, Notification
from model.directory_registry import DirectoryRegistry
from model.ignore_filter import IgnoreFilter
from watch.watch_service import WatchService


def test_register_schedules_recursive_watch_for_tree_root(watch_service, observer, root: Path) -> None:
    key = watch_service.register(root)
    assert key.valid
    assert key.directory == root
    assert observer.scheduled == [str(root)]
    assert observer.recursive[str(root)] is True
    assert len(watch_service) == 1


def test_directories_below_a_watched_one_share_its_watch(watch_service, observer, root: Path) -> None:
    (root / "sub" / "deeper").mkdir(parents=True)
    watch_service.register(root)
    sub_key = watch_service.register(root / "sub")
    deeper_key = watch_service.register(root / "sub" / "deeper")
    assert observer.scheduled == [str(root)]
    assert len(watch_service) == 3

    observer.emit(FileModifiedEvent(str(root / "sub" / "deeper" / "c.txt")))
    observer.emit(FileModifiedEvent(str(root / "sub" / "b.txt")))
    assert watch_service.take() is deeper_key
    assert watch_service.take() is sub_key
    assert deeper_key.poll_events() == [Notification(EventKind.MODIFIED, Path("c.txt"))]
    assert sub_key.poll_events() == [Notification(EventKind.MODIFIED, Path("b.txt"))]


def test_registering_an_ancestor_folds_existing_watches(watch_service, observer, root: Path) -> None:
    sub = root / "sub"
    sub.mkdir()
    sub_key = watch_service.register(sub)
    watch_service.register(root)
    assert observer.scheduled == [str(sub), str(root)]
    assert observer.unscheduled == [str(sub)]

    observer.emit(FileModifiedEvent(str(sub / "b.txt")))
    assert watch_service.take() is sub_key
    assert sub_key.poll_events() == [Notification(EventKind.MODIFIED, Path("b.txt"))]
    assert watch_service.poll(timeout=0) is None


def test_non_recursive_mode_schedules_every_directory(observer, root: Path) -> None:
    (root / "sub").mkdir()
    service = WatchService(observer=observer, recursive=False)
    service.register(root)
    service.register(root / "sub")
    assert observer.scheduled == [str(root), str(root / "sub")]
    assert not any(observer.recursive.values())


def test_register_same_directory_returns_same_key(watch_service, observer, root: Path) -> None:
    key = watch_service.register(root)
    assert watch_service.register(str(root)) is key
    assert observer.scheduled == [str(root)]


def test_register_rejects_missing_and_non_directories(watch_service, root: Path) -> None:
    with pytest.raises(FileNotFoundError):
        watch_service.register(root / "missing")
    (root / "a.txt").write_text("a")
    with pytest.raises(NotADirectoryError):
        watch_service.register(root / "a.txt")
    assert len(watch_service) == 0


def test_register_propagates_schedule_failure(watch_service, observer, root: Path) -> None:
    observer.fail_paths.add(str(root))
    with pytest.raises(PermissionError):
        watch_service.register(root)
    assert len(watch_service) == 0


def test_child_events_signal_key(watch_service, observer, root: Path) -> None:
    key = watch_service.register(root)
    assert watch_service.poll(timeout=0) is None
    observer.emit(FileCreatedEvent(str(root / "a.txt")))
    observer.emit(FileModifiedEvent(str(root / "a.txt")))
    observer.emit(FileDeletedEvent(str(root / "b.txt")))
    assert watch_service.take() is key
    assert key.poll_events() == [
        Notification(EventKind.CREATED, Path("a.txt")),
        Notification(EventKind.MODIFIED, Path("a.txt")),
        Notification(EventKind.DELETED, Path("b.txt")),
    ]
    # signalled once for the whole batch
    assert watch_service.poll(timeout=0) is None


def test_events_without_a_watched_directory_are_dropped(watch_service, observer, root: Path) -> None:
    watch_service.register(root)
    observer.emit(FileCreatedEvent(str(root / "sub" / "deep.txt")))
    observer.emit(DirModifiedEvent(str(root)))
    observer.emit(FileCreatedEvent(str(root.parent / "sibling.txt")))
    assert watch_service.poll(timeout=0) is None


def test_repeated_modifications_are_folded(watch_service, observer, root: Path) -> None:
    key = watch_service.register(root)
    for _ in range(3):
        observer.emit(FileModifiedEvent(str(root / "a.txt")))
    observer.emit(FileModifiedEvent(str(root / "b.txt")))
    assert watch_service.take() is key
    assert key.poll_events() == [
        Notification(EventKind.MODIFIED, Path("a.txt"), count=3),
        Notification(EventKind.MODIFIED, Path("b.txt")),
    ]


def test_full_batch_is_replaced_by_overflow(observer, root: Path) -> None:
    service = WatchService(observer=observer, max_pending_events=3)
    key = service.register(root)
    for name in ("a", "b", "c", "d", "e"):
        observer.emit(FileCreatedEvent(str(root / name)))
    # "d" overflowed the batch, "e" arrived after it
    assert key.poll_events() == [
        Notification(EventKind.OVERFLOW, None),
        Notification(EventKind.CREATED, Path("e")),
    ]


def test_repeated_overflows_are_folded(observer, root: Path) -> None:
    service = WatchService(observer=observer, max_pending_events=1)
    key = service.register(root)
    for name in ("a", "b", "c"):
        observer.emit(FileCreatedEvent(str(root / name)))
    assert key.poll_events() == [Notification(EventKind.OVERFLOW, None, count=2)]


def test_move_is_reported_as_delete_and_create(watch_service, observer, root: Path) -> None:
    key = watch_service.register(root)
    observer.emit(FileMovedEvent(str(root / "old.txt"), str(root / "new.txt")))
    assert key.poll_events() == [
        Notification(EventKind.DELETED, Path("old.txt")),
        Notification(EventKind.CREATED, Path("new.txt")),
    ]


def test_move_out_of_directory_is_a_delete(watch_service, observer, root: Path, tmp_path: Path) -> None:
    key = watch_service.register(root)
    observer.emit(FileMovedEvent(str(root / "a.txt"), str(tmp_path / "a.txt")))
    assert key.poll_events() == [Notification(EventKind.DELETED, Path("a.txt"))]


def test_reset_resignals_when_events_arrived_meanwhile(watch_service, observer, root: Path) -> None:
    key = watch_service.register(root)
    observer.emit(FileModifiedEvent(str(root / "a.txt")))
    assert watch_service.take() is key
    key.poll_events()
    observer.emit(FileModifiedEvent(str(root / "b.txt")))
    assert watch_service.poll(timeout=0) is None
    assert key.reset()
    assert watch_service.take() is key
    assert key.poll_events() == [Notification(EventKind.MODIFIED, Path("b.txt"))]
    assert key.reset()
    assert watch_service.poll(timeout=0) is None


def test_deleted_directory_invalidates_key(watch_service, observer, root: Path) -> None:
    sub = root / "sub"
    sub.mkdir()
    parent_key = watch_service.register(root)
    key = watch_service.register(sub)
    (sub / "b.txt").write_text("b")
    (sub / "b.txt").unlink()
    sub.rmdir()
    observer.emit(FileDeletedEvent(str(sub / "b.txt")))
    observer.emit(DirDeletedEvent(str(sub)))

    assert watch_service.take() is key
    assert not key.valid
    # the deletion that preceded the directory's own is still delivered
    assert key.poll_events() == [Notification(EventKind.DELETED, Path("b.txt"))]
    assert not key.reset()
    assert observer.unscheduled == []
    assert len(watch_service) == 1

    assert watch_service.take() is parent_key
    assert parent_key.poll_events() == [Notification(EventKind.DELETED, Path("sub"))]
    assert parent_key.reset()


def test_moved_directory_invalidates_key(watch_service, observer, root: Path, tmp_path: Path) -> None:
    sub = root / "sub"
    sub.mkdir()
    key = watch_service.register(sub)
    sub.rename(tmp_path / "elsewhere")
    observer.emit(DirMovedEvent(str(sub), str(tmp_path / "elsewhere")))
    assert watch_service.take() is key
    assert not key.reset()


def test_reset_fails_once_directory_is_gone(watch_service, observer, root: Path) -> None:
    sub = root / "sub"
    sub.mkdir()
    key = watch_service.register(sub)
    observer.emit(FileCreatedEvent(str(sub / "b.txt")))
    sub.rmdir()
    assert watch_service.take() is key
    key.poll_events()
    assert not key.reset()
    assert not key.valid
    assert len(watch_service) == 0


def test_recreated_directory_gets_a_new_key(watch_service, observer, root: Path) -> None:
    sub = root / "sub"
    sub.mkdir()
    key = watch_service.register(sub)
    key.cancel()
    assert not key.valid
    new_key = watch_service.register(sub)
    assert new_key is not key
    assert new_key.valid
    assert observer.scheduled.count(str(sub)) == 2


def test_replaced_directory_gets_a_new_key(watch_service, observer, root: Path, tmp_path: Path) -> None:
    sub = root / "sub"
    sub.mkdir()
    watch_service.register(root)
    old_key = watch_service.register(sub)
    # the old directory lives on elsewhere, so the new one cannot reuse its inode
    sub.rename(tmp_path / "old-sub")
    sub.mkdir()

    new_key = watch_service.register(sub)
    assert new_key is not old_key
    assert new_key.valid
    assert not old_key.valid
    # the stale key is signalled so its owner drops it
    assert watch_service.take() is old_key
    assert not old_key.reset()
    assert len(watch_service) == 2

    # a late report of the old directory's removal leaves the new key alone
    observer.emit(DirDeletedEvent(str(sub)))
    assert new_key.valid
    observer.emit(FileModifiedEvent(str(sub / "b.txt")))
    signalled = {watch_service.take(), watch_service.take()}
    assert new_key in signalled
    assert new_key.poll_events() == [Notification(EventKind.MODIFIED, Path("b.txt"))]


def test_invalid_key_is_never_signalled_again(watch_service, observer, root: Path) -> None:
    key = watch_service.register(root)
    key.cancel()
    observer.emit(FileCreatedEvent(str(root / "a.txt")))
    assert watch_service.poll(timeout=0) is None
    assert key.poll_events() == []


def test_native_observer_reports_new_file(root: Path) -> None:
    service = WatchService()
    service.start()
    try:
        key = service.register(root)
        (root / "a.txt").write_text("hello")
        names: set[Path] = set()
        deadline = time.monotonic() + 10
        while Path("a.txt") not in names and time.monotonic() < deadline:
            signalled = service.poll(timeout=0.5)
            if signalled is None:
                continue
            assert signalled is key
            names.update(n.name for n in key.poll_events())
            key.reset()
        assert Path("a.txt") in names
    finally:
        service.close()


def test_native_observer_watches_large_tree(root: Path) -> None:
    # more directories than the default limit of inotify instances per user
    for i in range(200):
        (root / f"d{i:03}").mkdir()
    service = WatchService()
    service.start()
    try:
        registry = DirectoryRegistry(service, IgnoreFilter())
        registry.register_recursive(root)
        assert len(registry) == 201

        last = root / "d199"
        (last / "a.txt").write_text("hello")
        names: set[Path] = set()
        deadline = time.monotonic() + 10
        while Path("a.txt") not in names and time.monotonic() < deadline:
            signalled = service.poll(timeout=0.5)
            if signalled is None:
                continue
            if signalled.directory == last:
                names.update(n.name for n in signalled.poll_events())
            signalled.reset()
        assert Path("a.txt") in names
    finally:
        service.close()
