"""Tests for the media sync engine against an in-memory server"""

from datetime import datetime, timezone
from pathlib import Path

import pytest

from conftest import make_item
from mediasync.api.models import CatalogItem, ItemFileType, UserAction
from mediasync.core.cancellation import CancellationToken
from mediasync.core.exceptions import ApiError, DatabaseError, SyncCancelledError
from mediasync.sync.media_sync import MediaSyncEngine


def seed_local_item(store, server, item_id, name="Old Movie", users=None):
    """Put an already synced item with a media file into the store."""
    local_item = store.create_local_item(CatalogItem.from_api(make_item(item_id, name)), server, f"{name}.mkv")
    local_item.user_ids_with_access = users or []
    store.add_or_update(local_item)
    store.save_media([b"old-bytes"], local_item)
    return local_item


def record_action(store, minute, item_id="item-1"):
    return store.record_user_action(UserAction(
        server_id="server-1",
        item_id=item_id,
        user_id="user-1",
        type="PlayedItem",
        date=datetime(2024, 1, 1, 12, minute, tzinfo=timezone.utc),
    ))


class TestCapabilityCheck:
    """Servers without sync support are skipped"""

    def test_unsupported_server_is_skipped(self, store, fake_server, server_record):
        """No reconciliation happens and progress completes"""
        fake_server.supports_sync = False
        reported = []

        stats = MediaSyncEngine(store).sync(fake_server, server_record, reported.append)

        assert stats.skipped
        assert fake_server.sync_data_requests == []
        assert reported == [100.0]


class TestOfflineActions:
    """Replay of actions recorded while offline"""

    def test_actions_reported_oldest_first_then_deleted(self, store, fake_server, server_record):
        """Actions go out sorted by date and are removed after acceptance"""
        record_action(store, 30)
        record_action(store, 10)
        record_action(store, 20)

        stats = MediaSyncEngine(store).sync(fake_server, server_record)

        assert stats.actions_reported == 3
        batch = fake_server.reported_actions[0]
        assert [a.date.minute for a in batch] == [10, 20, 30]
        assert store.get_user_actions("server-1") == []

    def test_failed_submission_keeps_actions(self, store, fake_server, server_record):
        """Nothing is deleted and the sync aborts when the server rejects the batch"""
        record_action(store, 10)
        fake_server.fail_offline_actions = True

        with pytest.raises(ApiError):
            MediaSyncEngine(store).sync(fake_server, server_record)

        assert len(store.get_user_actions("server-1")) == 1
        assert fake_server.sync_data_requests == []

    def test_no_actions_means_no_call(self, store, fake_server, server_record):
        """An empty batch is never submitted"""
        MediaSyncEngine(store).sync(fake_server, server_record)

        assert fake_server.reported_actions == []

    def test_actions_of_other_servers_untouched(self, store, fake_server, server_record):
        """Only this server's actions are replayed"""
        store.record_user_action(UserAction(
            server_id="server-2",
            item_id="item-9",
            user_id="user-9",
            type="PlayedItem",
            date=datetime(2024, 1, 1, tzinfo=timezone.utc),
        ))

        MediaSyncEngine(store).sync(fake_server, server_record)

        assert fake_server.reported_actions == []
        assert len(store.get_user_actions("server-2")) == 1


class TestReconciliation:
    """The two-pass SyncData exchange"""

    def test_sync_data_sent_twice_with_device_and_users(self, store, fake_server, server_record):
        """Both passes carry the target id, local ids and offline user ids"""
        seed_local_item(store, server_record, "item-1")
        fake_server.assigned["item-1"] = ["user-1"]

        MediaSyncEngine(store).sync(fake_server, server_record)

        assert len(fake_server.sync_data_requests) == 2
        for request in fake_server.sync_data_requests:
            assert request.target_id == "device-1"
            assert request.local_item_ids == ["item-1"]
            assert request.offline_user_ids == ["user-1"]

    def test_empty_removal_lists_leave_storage_alone(self, store, fake_server, server_record):
        """Two passes with nothing to remove and unchanged access are a no-op"""
        local_item = seed_local_item(store, server_record, "item-1", users=["user-1"])
        fake_server.assigned["item-1"] = ["user-1"]
        files_before = store.get_files(local_item)

        stats = MediaSyncEngine(store).sync(fake_server, server_record)

        assert stats.items_removed == 0
        assert stats.access_updated == 0
        assert store.get_files(local_item) == files_before
        assert store.get_local_item(local_item.id).user_ids_with_access == ["user-1"]

    def test_removed_item_has_no_files_and_no_row(self, store, fake_server, server_record):
        """Items the server no longer assigns are deleted with their files"""
        local_item = seed_local_item(store, server_record, "item-gone")
        media_path = Path(local_item.local_path)
        assert media_path.exists()

        stats = MediaSyncEngine(store).sync(fake_server, server_record)

        assert stats.items_removed == 1
        assert store.get_local_item(local_item.id) is None
        assert store.get_files(local_item) == []
        assert not media_path.exists()

    def test_user_access_applied(self, store, fake_server, server_record):
        """Differing access lists are replaced"""
        local_item = seed_local_item(store, server_record, "item-1", users=["user-1"])
        fake_server.assigned["item-1"] = ["user-1", "user-2"]

        stats = MediaSyncEngine(store).sync(fake_server, server_record)

        assert stats.access_updated == 1
        assert store.get_local_item(local_item.id).user_ids_with_access == ["user-1", "user-2"]

    def test_user_access_comparison_ignores_case(self, store, fake_server, server_record):
        """Same ids in a different case are not an update"""
        seed_local_item(store, server_record, "item-1", users=["USER-1"])
        fake_server.assigned["item-1"] = ["user-1"]

        stats = MediaSyncEngine(store).sync(fake_server, server_record)

        assert stats.access_updated == 0

    def test_removal_failure_does_not_stop_loop(self, store, fake_server, server_record, monkeypatch):
        """A failing deletion is logged and the next item is still removed"""
        first = seed_local_item(store, server_record, "item-a", name="A")
        second = seed_local_item(store, server_record, "item-b", name="B")
        original_delete = store.delete

        def flaky_delete(local_item):
            if local_item.id == first.id:
                raise OSError("disk busy")
            original_delete(local_item)

        monkeypatch.setattr(store, "delete", flaky_delete)

        MediaSyncEngine(store).sync(fake_server, server_record)

        assert store.get_local_item(second.id) is None


class TestRetrieval:
    """Download of new media"""

    def test_new_item_downloaded_and_acknowledged(self, store, fake_server, server_record):
        """The media file lands on disk and the transfer is reported"""
        fake_server.add_job_item("job-1", make_item("item-1", "Big Movie"), data=b"0123456789",
                                 original_file_name="big.mkv")

        stats = MediaSyncEngine(store).sync(fake_server, server_record)

        assert stats.items_transferred == 1
        assert fake_server.transferred == ["job-1"]

        local_item = store.get_local_item_for("server-1", "item-1")
        assert local_item is not None
        assert Path(local_item.local_path).read_bytes() == b"0123456789"
        assert Path(local_item.local_path).name == "big.mkv"
        assert local_item.item.media_sources[0].path == local_item.local_path
        assert local_item.item.media_sources[0].protocol == "File"

    def test_failed_media_download_not_acknowledged(self, store, fake_server, server_record):
        """The local item exists, no acknowledgement, and the next sync retries"""
        fake_server.add_job_item("job-1", make_item("item-1"), data=b"0123456789abcdef")
        fake_server.add_job_item("job-2", make_item("item-2", "Other"))
        fake_server.failing_files.add("job-1")
        engine = MediaSyncEngine(store)

        stats = engine.sync(fake_server, server_record)

        assert stats.items_failed == 1
        assert fake_server.transferred == ["job-2"]
        local_item = store.get_local_item_for("server-1", "item-1")
        assert local_item is not None
        assert not Path(local_item.local_path).exists()

        fake_server.failing_files.clear()
        engine.sync(fake_server, server_record)

        assert fake_server.transferred == ["job-2", "job-1"]
        assert Path(local_item.local_path).read_bytes() == b"0123456789abcdef"

    def test_acknowledgement_failure_does_not_stop_loop(self, store, fake_server, server_record, monkeypatch):
        """An item whose transfer report fails is counted failed and the next one still arrives"""
        fake_server.add_job_item("job-1", make_item("item-1"))
        fake_server.add_job_item("job-2", make_item("item-2", "Other"))
        original_report = fake_server.report_sync_job_item_transferred

        def flaky_report(job_item_id):
            if job_item_id == "job-1":
                raise ApiError("Request failed", status_code=500)
            original_report(job_item_id)

        monkeypatch.setattr(fake_server, "report_sync_job_item_transferred", flaky_report)

        stats = MediaSyncEngine(store).sync(fake_server, server_record)

        assert fake_server.transferred == ["job-2"]
        assert stats.items_transferred == 1
        assert stats.items_failed == 1

    def test_primary_image_downloaded(self, store, fake_server, server_record):
        """A primary image is saved beside the media file"""
        fake_server.add_job_item("job-1", make_item("item-1", ImageTags={"Primary": "tag-1"}))

        MediaSyncEngine(store).sync(fake_server, server_record)

        local_item = store.get_local_item_for("server-1", "item-1")
        images = [f for f in store.get_files(local_item) if f.type == ItemFileType.IMAGE]
        assert len(images) == 1
        assert Path(images[0].path).read_bytes() == b"image-bytes"

    def test_photo_keeps_original_beside_thumbnail(self, store, fake_server, server_record):
        """A jpeg thumbnail never overwrites the jpeg photo it belongs to"""
        photo = make_item("photo-1", "Beach", Type="Photo", MediaType="Photo", ImageTags={"Primary": "tag-1"})
        fake_server.add_job_item("job-1", photo, data=b"ORIGINAL-PHOTO", original_file_name="beach.jpg")

        MediaSyncEngine(store).sync(fake_server, server_record)

        local_item = store.get_local_item_for("server-1", "photo-1")
        assert Path(local_item.local_path).read_bytes() == b"ORIGINAL-PHOTO"
        files = {f.type: f for f in store.get_files(local_item)}
        assert set(files) == {ItemFileType.MEDIA, ItemFileType.IMAGE}
        assert Path(files[ItemFileType.IMAGE].path).read_bytes() == b"image-bytes"
        assert fake_server.transferred == ["job-1"]

    def test_image_failure_does_not_block_acknowledgement(self, store, fake_server, server_record):
        """A missing image is logged and the item still counts as transferred"""
        fake_server.add_job_item("job-1", make_item("item-1", ImageTags={"Primary": "tag-1"}))
        fake_server.missing_images.add(fake_server.get_image_url("item-1", "Primary", "tag-1"))

        MediaSyncEngine(store).sync(fake_server, server_record)

        assert fake_server.transferred == ["job-1"]

    def test_stale_image_removed(self, store, fake_server, server_record):
        """A cached image is deleted once the server item no longer has it"""
        fake_server.add_job_item("job-1", make_item("item-1", ImageTags={"Primary": "tag-1"}))
        engine = MediaSyncEngine(store)
        engine.sync(fake_server, server_record)

        local_item = store.get_local_item_for("server-1", "item-1")
        image_path = next(f.path for f in store.get_files(local_item) if f.type == ItemFileType.IMAGE)

        fake_server.add_job_item("job-2", make_item("item-1"))
        engine.sync(fake_server, server_record)

        assert not Path(image_path).exists()
        assert all(f.type != ItemFileType.IMAGE for f in store.get_files(local_item))

    def test_stale_image_failure_still_acknowledged(self, store, fake_server, server_record, monkeypatch):
        """A database error while dropping a stale image is logged, not fatal"""
        fake_server.add_job_item("job-1", make_item("item-1", ImageTags={"Primary": "tag-1"}))
        engine = MediaSyncEngine(store)
        engine.sync(fake_server, server_record)

        def failing_delete(file):
            raise DatabaseError("database is locked")

        monkeypatch.setattr(store, "delete_file", failing_delete)
        fake_server.add_job_item("job-2", make_item("item-1"))
        stats = engine.sync(fake_server, server_record)

        assert fake_server.transferred == ["job-1", "job-2"]
        assert stats.items_transferred == 1

    def test_series_image_downloaded_once(self, store, fake_server, server_record):
        """Episodes of one series share a single cached series image"""
        for n in (1, 2):
            fake_server.add_job_item(f"job-{n}", make_item(
                f"episode-{n}",
                f"Episode {n}",
                Type="Episode",
                SeriesId="series-1",
                SeriesName="Show",
                SeasonName="Season 1",
                SeriesPrimaryImageTag="series-tag",
            ))

        MediaSyncEngine(store).sync(fake_server, server_record)

        assert store.has_image("series-1", "series-tag")
        series_requests = [u for u in fake_server.image_requests if "series-1" in u]
        assert len(series_requests) == 1

    def test_subtitles_saved_and_stream_path_updated(self, store, fake_server, server_record):
        """Requested subtitle tracks are stored and the item points at them"""
        item = make_item("item-1")
        item["MediaSources"][0]["MediaStreams"] = [
            {"Index": 0, "Type": "Video", "Codec": "h264"},
            {"Index": 2, "Type": "Subtitle", "Codec": "srt", "Language": "eng", "IsForced": False},
        ]
        fake_server.add_job_item(
            "job-1", item, original_file_name="movie.mkv",
            additional_files=[{"Name": "sub-2.srt", "Type": "Subtitles", "Index": 2}]
        )
        fake_server.additional_files[("job-1", "sub-2.srt")] = b"1\n00:00:01,000 --> 00:00:02,000\nHi\n"

        MediaSyncEngine(store).sync(fake_server, server_record)

        local_item = store.get_local_item_for("server-1", "item-1")
        stream = local_item.item.media_sources[0].media_streams[1]
        assert stream.path is not None
        assert Path(stream.path).name == "movie.eng.srt"
        assert Path(stream.path).read_bytes().startswith(b"1\n")
        assert fake_server.transferred == ["job-1"]

    def test_missing_subtitle_file_still_acknowledged(self, store, fake_server, server_record):
        """A subtitle download failure does not hold back the item"""
        item = make_item("item-1")
        item["MediaSources"][0]["MediaStreams"] = [{"Index": 1, "Type": "Subtitle", "Codec": "srt"}]
        fake_server.add_job_item(
            "job-1", item,
            additional_files=[{"Name": "missing.srt", "Type": "Subtitles", "Index": 1}]
        )

        MediaSyncEngine(store).sync(fake_server, server_record)

        assert fake_server.transferred == ["job-1"]

    def test_reoffered_item_keeps_user_access(self, store, fake_server, server_record):
        """Retrieval does not reset the access list granted by reconciliation"""
        seed_local_item(store, server_record, "item-1", name="Movie", users=["user-1"])
        fake_server.add_job_item("job-1", make_item("item-1"), users=["user-1"])

        MediaSyncEngine(store).sync(fake_server, server_record)

        assert store.get_local_item_for("server-1", "item-1").user_ids_with_access == ["user-1"]


class TestProgressAndCancellation:
    """Progress reporting and cooperative cancellation"""

    def test_progress_non_decreasing_and_complete(self, store, fake_server, server_record):
        """Milestones climb monotonically to exactly 100"""
        record_action(store, 5)
        fake_server.add_job_item("job-1", make_item("item-1"), data=b"x" * 40)
        fake_server.add_job_item("job-2", make_item("item-2", "Two"), data=b"y" * 40)
        reported = []

        MediaSyncEngine(store).sync(fake_server, server_record, reported.append)

        assert reported[:3] == [1.0, 2.0, 3.0]
        assert all(a <= b for a, b in zip(reported, reported[1:]))
        assert reported[-1] == 100.0

    def test_cancelled_before_retrieval(self, store, fake_server, server_record):
        """Cancellation raises and nothing is acknowledged"""
        fake_server.add_job_item("job-1", make_item("item-1"))
        token = CancellationToken()
        token.cancel()

        with pytest.raises(SyncCancelledError):
            MediaSyncEngine(store).sync(fake_server, server_record, cancellation=token)

        assert fake_server.transferred == []
