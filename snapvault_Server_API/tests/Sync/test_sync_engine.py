# test_sync_engine.py
#
#
# Imports
from unittest.mock import MagicMock
#
# Third-Party Imports
import pytest
#
# Local Imports
from snapvault_Server_API.app.core.Sync import SyncManager, SyncResult, SyncState, DeviceIdentityError
from snapvault_Server_API.app.core.Sync.exceptions import TransportError
from snapvault_Server_API.app.core.Sync.models import PhotoRecord
#
#######################################################################################################################
#
# Functions:


def _remote(server, device, photo_id):
    return server.meta_db.get_item(device.identity.get_device_id(), photo_id)


def _fail_for(transport, photo_id):
    """Hook that fails the current operation only for one record."""
    def _hook():
        if transport.calls[-1][1] == photo_id:
            raise TransportError("simulated per-item failure", status_code=500)
    return _hook


class TestPushPhase:
    def test_upload_then_synced(self, make_device, server, bucket):
        a = make_device("a")
        rec = a.db.add_photo("cat.png", b"meow", "image/png", folder="Cats", favorite=True)

        result = a.manager.sync_now()

        assert (result.uploaded, result.updated, result.deleted, result.failed) == (1, 0, 0, 0)
        stored = a.db.get_photo(rec.id)
        assert stored.sync_state == SyncState.SYNCED
        assert stored.updated_at == rec.updated_at
        remote = _remote(server, a, rec.id)
        assert (remote.folder, remote.favorite, remote.deleted) == ("Cats", True, False)
        assert remote.updated_at == rec.updated_at
        assert bucket[remote.key] == (b"meow", "image/png")
        assert a.transport.calls[:3] == [("upload-url", rec.id), ("blob-put", remote.key),
                                         ("upload-complete", rec.id)]

    def test_upload_atomicity_no_ghost_entry(self, make_device, server):
        a = make_device("a")
        rec = a.db.add_photo("a.jpg", b"x")
        a.transport.fail_ops.add("blob-put")

        result = a.manager.sync_now()

        assert result.uploaded == 0
        assert result.failed == 1
        assert a.transport.count("upload-url") == 1
        assert a.transport.count("upload-complete") == 0
        assert a.db.get_photo(rec.id).sync_state == SyncState.PENDING_UPLOAD
        assert [i.id for i in server.list_items(a.identity.get_device_id())] == []

        a.transport.fail_ops.clear()
        assert a.manager.sync_now().uploaded == 1
        assert a.db.get_photo(rec.id).sync_state == SyncState.SYNCED

    def test_update_pushes_flags(self, make_device, server):
        a = make_device("a")
        rec = a.db.add_photo("a.jpg", b"x")
        a.manager.sync_now()
        edited = a.db.set_photo_folder(rec.id, "Trips")

        result = a.manager.sync_now()

        assert (result.uploaded, result.updated) == (0, 1)
        remote = _remote(server, a, rec.id)
        assert remote.folder == "Trips"
        assert remote.updated_at == edited.updated_at
        assert a.db.get_photo(rec.id).sync_state == SyncState.SYNCED

    def test_delete_pushes_tombstone_and_keeps_it_locally(self, make_device, server):
        a = make_device("a")
        rec = a.db.add_photo("a.jpg", b"x")
        a.manager.sync_now()
        a.db.soft_delete_photo(rec.id)

        result = a.manager.sync_now()

        assert result.deleted == 1
        local = a.db.get_photo(rec.id)
        assert local.deleted is True
        assert local.sync_state == SyncState.SYNCED
        assert _remote(server, a, rec.id).deleted is True

    def test_failed_delete_stays_pending(self, make_device):
        a = make_device("a")
        rec = a.db.add_photo("a.jpg", b"x")
        a.db.soft_delete_photo(rec.id)
        a.transport.fail_ops.add("delete")

        result = a.manager.sync_now()

        assert result.deleted == 0
        assert result.failed == 1
        assert a.db.get_photo(rec.id).sync_state == SyncState.PENDING_DELETE

    def test_tombstone_changed_during_delete_stays_pending(self, make_device, server):
        a = make_device("a")
        rec = a.db.add_photo("a.jpg", b"x")
        a.manager.sync_now()
        tombstone = a.db.soft_delete_photo(rec.id)

        def _rewrite_tombstone():
            current = a.db.get_photo(rec.id)
            current.updated_at = tombstone.updated_at + 5
            a.db.put_photo(current)
            a.transport.hooks.pop("delete")
        a.transport.hooks["delete"] = _rewrite_tombstone

        assert a.manager.sync_now().deleted == 1
        assert a.db.get_photo(rec.id).sync_state == SyncState.PENDING_DELETE

        assert a.manager.sync_now().deleted == 1
        assert a.db.get_photo(rec.id).sync_state == SyncState.SYNCED
        assert _remote(server, a, rec.id).deleted is True

    def test_push_order_is_delete_upload_update(self, make_device):
        a = make_device("a")
        to_update = a.db.add_photo("u.jpg", b"u")
        to_delete = a.db.add_photo("d.jpg", b"d")
        a.manager.sync_now()
        a.db.toggle_favorite(to_update.id)
        a.db.soft_delete_photo(to_delete.id)
        new = a.db.add_photo("n.jpg", b"n")
        a.transport.calls.clear()

        a.manager.sync_now()

        ops = [op for op, _ in a.transport.calls if op in ("delete", "upload-url", "update")]
        assert ops == ["delete", "upload-url", "update"]
        assert a.db.get_photo(new.id).sync_state == SyncState.SYNCED

    def test_one_failing_item_does_not_abort_batch(self, make_device):
        a = make_device("a")
        first = a.db.add_photo("1.jpg", b"1")
        second = a.db.add_photo("2.jpg", b"2")
        a.transport.hooks["upload-complete"] = _fail_for(a.transport, first.id)

        result = a.manager.sync_now()

        assert result.uploaded == 1
        assert result.failed == 1
        assert any(first.id in err for err in result.errors)
        assert a.db.get_photo(first.id).sync_state == SyncState.PENDING_UPLOAD
        assert a.db.get_photo(second.id).sync_state == SyncState.SYNCED

    def test_edit_during_flight_stays_pending(self, make_device, server):
        a = make_device("a")
        rec = a.db.add_photo("a.jpg", b"x")
        a.manager.sync_now()
        a.db.toggle_favorite(rec.id)
        a.transport.hooks["update"] = lambda: a.db.set_photo_folder(rec.id, "Later")

        assert a.manager.sync_now().updated == 1
        assert a.db.get_photo(rec.id).sync_state == SyncState.PENDING_UPDATE

        a.transport.hooks.clear()
        a.manager.sync_now()
        assert a.db.get_photo(rec.id).sync_state == SyncState.SYNCED
        assert _remote(server, a, rec.id).folder == "Later"


class TestDeleteDominance:
    def test_deleted_pending_upload_is_never_uploaded(self, make_device, server):
        a = make_device("a")
        rec = a.db.add_photo("a.jpg", b"x")
        a.db.soft_delete_photo(rec.id)

        result = a.manager.sync_now()

        assert a.transport.count("upload-url") == 0
        assert a.transport.count("delete") == 1
        assert result.deleted == 1
        assert _remote(server, a, rec.id).deleted is True

    def test_delete_during_pass_redirects_upload(self, make_device, server):
        a = make_device("a")
        doomed = a.db.add_photo("d.jpg", b"d")
        a.db.soft_delete_photo(doomed.id)
        late = a.db.add_photo("late.jpg", b"l")
        def _delete_late():
            # the pending snapshot still lists `late` as an upload when this runs
            a.transport.hooks.pop("delete")
            a.db.soft_delete_photo(late.id)
        a.transport.hooks["delete"] = _delete_late

        result = a.manager.sync_now()

        assert ("upload-url", late.id) not in a.transport.calls
        assert ("delete", late.id) in a.transport.calls
        assert result.deleted == 2
        assert a.db.get_photo(late.id).sync_state == SyncState.SYNCED
        assert _remote(server, a, late.id).deleted is True

    def test_deleted_pending_update_is_never_updated(self, make_device, server):
        a = make_device("a")
        rec = a.db.add_photo("a.jpg", b"x")
        a.manager.sync_now()
        a.db.toggle_favorite(rec.id)
        a.db.soft_delete_photo(rec.id)
        a.transport.calls.clear()

        a.manager.sync_now()

        assert a.transport.count("update") == 0
        assert a.transport.count("delete") == 1
        assert _remote(server, a, rec.id).deleted is True


class TestPullPhase:
    def test_materializes_new_remote_photo(self, make_device):
        a = make_device("a")
        rec = a.db.add_photo("cat.png", b"meow", "image/png", folder="Cats")
        a.manager.sync_now()
        b = make_device("b", device_id=a.identity.get_device_id())

        result = b.manager.sync_now()

        assert result.pulled == 1
        pulled = b.db.get_photo(rec.id)
        assert (pulled.blob, pulled.content_type, pulled.folder) == (b"meow", "image/png", "Cats")
        assert pulled.sync_state == SyncState.SYNCED
        assert pulled.updated_at == rec.updated_at
        assert "Cats" in b.db.get_folders()

    def test_download_failure_leaves_item_absent(self, make_device):
        a = make_device("a")
        rec = a.db.add_photo("a.jpg", b"x")
        a.manager.sync_now()
        b = make_device("b", device_id=a.identity.get_device_id())
        b.transport.fail_ops.add("blob-get")

        result = b.manager.sync_now()

        assert result.pulled == 0
        assert result.failed == 1
        assert result.pull_skipped is False
        assert b.db.get_photo(rec.id) is None

        b.transport.fail_ops.clear()
        assert b.manager.sync_now().pulled == 1

    def test_remote_tombstone_not_materialized(self, make_device):
        a = make_device("a")
        rec = a.db.add_photo("a.jpg", b"x")
        a.manager.sync_now()
        a.db.soft_delete_photo(rec.id)
        a.manager.sync_now()
        b = make_device("b", device_id=a.identity.get_device_id())

        result = b.manager.sync_now()

        assert result.pulled == 0
        assert b.transport.count("download-url") == 0
        assert b.db.get_photo(rec.id) is None

    def test_merges_newer_remote_into_clean_record(self, make_device, server):
        a = make_device("a")
        rec = a.db.add_photo("a.jpg", b"x")
        a.manager.sync_now()
        b = make_device("b", device_id=a.identity.get_device_id())
        b.manager.sync_now()
        b.db.set_photo_folder(rec.id, "FromB")
        b.manager.sync_now()

        result = a.manager.sync_now()

        assert result.merged == 1
        local = a.db.get_photo(rec.id)
        assert local.folder == "FromB"
        assert local.sync_state == SyncState.SYNCED
        assert local.blob == b"x"

    def test_pull_never_clobbers_pending_record(self, make_device, server):
        a = make_device("a")
        rec = a.db.add_photo("a.jpg", b"x")
        a.manager.sync_now()
        device_id = a.identity.get_device_id()
        server.update_flags(device_id, rec.id, updated_at=10 ** 15, folder="Remote")
        a.db.set_photo_folder(rec.id, "Mine")
        a.transport.fail_ops.add("update")

        result = a.manager.sync_now()

        assert result.merged == 0
        local = a.db.get_photo(rec.id)
        assert local.folder == "Mine"
        assert local.sync_state == SyncState.PENDING_UPDATE

        # once pushed (stale on the server), the newer remote value converges locally
        a.transport.fail_ops.clear()
        result = a.manager.sync_now()
        assert (result.updated, result.merged) == (1, 1)
        assert a.db.get_photo(rec.id).folder == "Remote"

    def test_server_tombstone_beats_local_pending_edit(self, make_device, server):
        a = make_device("a")
        rec = a.db.add_photo("a.jpg", b"x")
        a.manager.sync_now()
        server.mark_deleted(a.identity.get_device_id(), rec.id)
        a.db.toggle_favorite(rec.id)

        result = a.manager.sync_now()

        assert result.updated == 0
        assert result.tombstoned == 1
        local = a.db.get_photo(rec.id)
        assert local.deleted is True
        assert local.sync_state == SyncState.SYNCED
        assert local.blob == b""
        assert a.db.list_visible_photos() == []

    def test_pull_skipped_when_list_unavailable(self, make_device):
        a = make_device("a")
        a.db.add_photo("a.jpg", b"x")
        a.transport.fail_ops.add("sync")

        result = a.manager.sync_now()

        assert result.ok is True
        assert result.uploaded == 1
        assert result.pull_skipped is True
        assert result.last_sync_at is not None
        assert a.db.get_last_sync_at() == result.last_sync_at


class TestTombstoneMonotonicity:
    def test_local_tombstone_survives_live_remote(self, make_device, server):
        a = make_device("a")
        device_id = a.identity.get_device_id()
        a.db.put_photo(PhotoRecord(id="p1", name="p1.jpg", created_at=1, updated_at=2, deleted=True,
                                   sync_state=SyncState.SYNCED))
        server.confirm_upload(device_id, "p1", created_at=1, updated_at=10 ** 15)

        a.manager.sync_now()

        local = a.db.get_photo("p1")
        assert local.deleted is True
        assert a.transport.count("download-url") == 0

    def test_purged_tombstone_is_not_resurrected(self, make_device):
        a = make_device("a")
        rec = a.db.add_photo("a.jpg", b"x")
        a.manager.sync_now()
        a.db.soft_delete_photo(rec.id)
        a.manager.sync_now()
        assert a.db.purge_synced_tombstones() == 1

        result = a.manager.sync_now()

        assert result.pulled == 0
        assert a.db.get_photo(rec.id) is None

    def test_scenario_two_devices(self, make_device, server):
        a = make_device("a")
        p1 = a.db.add_photo("p1.jpg", b"one")
        device_id = a.identity.get_device_id()

        # pass 1: upload
        assert a.manager.sync_now().uploaded == 1
        assert server.meta_db.get_item(device_id, p1.id).deleted is False

        # local delete, pass 2: tombstone pushed
        a.db.soft_delete_photo(p1.id)
        assert a.db.get_photo(p1.id).sync_state == SyncState.PENDING_DELETE
        assert a.manager.sync_now().deleted == 1
        remote = server.meta_db.get_item(device_id, p1.id)
        assert remote.deleted is True
        assert a.db.get_photo(p1.id).sync_state == SyncState.SYNCED

        # pass 3 on another installation of the same namespace
        b = make_device("b", device_id=device_id)
        result = b.manager.sync_now()
        assert result.pulled == 0
        assert b.db.get_photo(p1.id) is None


class TestConvergence:
    def test_retried_confirm_does_not_overwrite_other_device_edit(self, make_device, server):
        a = make_device("a")
        device_id = a.identity.get_device_id()
        b = make_device("b", device_id=device_id)
        rec = a.db.add_photo("p1.jpg", b"one")

        # the confirmation lands on the server but its response is lost
        deliver_confirm = a.transport.confirm_upload

        def _confirm_then_drop(dev, record):
            deliver_confirm(dev, record)
            a.transport.confirm_upload = deliver_confirm
            raise TransportError("response lost", status_code=504, operation="upload-complete")
        a.transport.confirm_upload = _confirm_then_drop

        assert a.manager.sync_now().uploaded == 0
        assert a.db.get_photo(rec.id).sync_state == SyncState.PENDING_UPLOAD

        assert b.manager.sync_now().pulled == 1
        edited = b.db.set_photo_folder(rec.id, "FromB")
        assert b.manager.sync_now().updated == 1

        # retry from A, then let both settle
        assert a.manager.sync_now().uploaded == 1
        b.manager.sync_now()

        remote = server.meta_db.get_item(device_id, rec.id)
        assert (remote.folder, remote.updated_at) == ("FromB", edited.updated_at)
        for device in (a, b):
            local = device.db.get_photo(rec.id)
            assert local.folder == "FromB"
            assert local.updated_at == edited.updated_at
            assert local.sync_state == SyncState.SYNCED


class TestGuardAndGating:
    def test_reentrant_call_is_zero_effect(self, make_device):
        a = make_device("a")
        a.db.add_photo("a.jpg", b"x")
        nested = []
        a.transport.hooks["upload-url"] = lambda: nested.append(a.manager.sync_now("nested"))

        outer = a.manager.sync_now()

        assert outer.uploaded == 1
        [inner] = nested
        assert inner.skipped is True
        assert (inner.uploaded, inner.updated, inner.deleted, inner.pulled) == (0, 0, 0, 0)
        assert a.transport.count("upload-url") == 1
        assert a.transport.count("sync") == 1
        assert not a.manager.is_syncing()

    def test_guard_released_after_exception(self, make_device):
        a = make_device("a")
        a.identity.get_device_id = MagicMock(side_effect=DeviceIdentityError("no id"))
        with pytest.raises(DeviceIdentityError):
            a.manager.sync_now()
        assert not a.manager.is_syncing()

    def test_guard_is_per_instance(self, make_device):
        a = make_device("a")
        b = make_device("b")
        a.db.add_photo("a.jpg", b"x")
        b_results = []
        a.transport.hooks["upload-url"] = lambda: b_results.append(b.manager.sync_now())

        a.manager.sync_now()

        assert b_results[0].skipped is False

    def test_sync_if_enabled_respects_setting(self, make_device):
        a = make_device("a")
        a.db.add_photo("a.jpg", b"x")
        a.db.set_sync_enabled(False)

        result = a.manager.sync_if_enabled("foreground")

        assert result.skipped is True
        assert a.transport.calls == []

    def test_sync_if_enabled_never_raises(self, make_device):
        a = make_device("a")
        a.identity.get_device_id = MagicMock(side_effect=DeviceIdentityError("no id"))

        result = a.manager.sync_if_enabled("online")

        assert result.ok is False
        assert "no id" in result.errors[0]

    def test_result_to_dict(self, make_device):
        a = make_device("a")
        data = a.manager.sync_now().to_dict()
        assert data["ok"] is True
        assert set(SyncResult().to_dict()) == set(data)

    def test_constructor_type_checks(self, make_device):
        a = make_device("a")
        with pytest.raises(TypeError):
            SyncManager(a.db, object(), a.identity)
        with pytest.raises(TypeError):
            SyncManager(a.db, a.transport, a.identity, resolver=object())

#
# End of test_sync_engine.py
#######################################################################################################################
