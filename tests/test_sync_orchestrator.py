"""Tests for the sync polling loop, driven by an in-memory bucket and fake transfer."""

import threading
import time

from config.settings import Settings
from data.services.sync_types import CycleOutcome, ExitCode, SyncDirection
from utils.cancellation import CancellationToken

LOCK_KEY = f"site/{Settings.LOCK_FILE_NAME}"


def _touch(orchestrator, name="index.html", text="changed"):
    (orchestrator.config.local_root / name).write_text(text)


class TestCycle:
    def test_first_cycle_only_records_baseline(self, make_orchestrator, transfer):
        orchestrator = make_orchestrator()

        assert orchestrator.run_cycle() is CycleOutcome.SUCCEEDED
        assert transfer.directions() == ["down"]
        assert orchestrator.state.has_baseline

    def test_unchanged_tree_skips_uplink(self, make_orchestrator, transfer):
        orchestrator = make_orchestrator()
        orchestrator.run_cycle()
        orchestrator.run_cycle()

        assert transfer.directions() == ["down", "down"]

    def test_change_uploads_under_lock_and_notifies(self, make_orchestrator, transfer, notifier, store):
        orchestrator = make_orchestrator(distributed=True, cdn_url_map="web-map")
        orchestrator.run_cycle()
        _touch(orchestrator)

        held_during_upload = []
        transfer.on_transfer = lambda direction, path: held_during_upload.append(
            (direction, store.body(LOCK_KEY))
        )

        assert orchestrator.run_cycle() is CycleOutcome.SUCCEEDED
        assert held_during_upload[0] == (SyncDirection.UP, "node-a")
        assert transfer.directions() == ["down", "up", "down"]
        assert notifier.calls == [("web-map", "/*")]
        assert LOCK_KEY not in store.objects

    def test_first_cycle_never_uploads_even_with_content(self, make_orchestrator, transfer):
        orchestrator = make_orchestrator(upload_only=True)
        assert orchestrator.run_cycle() is CycleOutcome.SUCCEEDED
        assert transfer.calls == []

    def test_lock_held_by_peer_fails_cycle_without_upload(self, make_orchestrator, transfer, store):
        orchestrator = make_orchestrator(distributed=True)
        orchestrator.run_cycle()
        store.put(LOCK_KEY, "node-b")
        _touch(orchestrator)

        assert orchestrator.run_cycle() is CycleOutcome.FAILED
        assert "up" not in transfer.directions()
        assert store.body(LOCK_KEY) == "node-b"

    def test_failed_upload_keeps_baseline_and_retries(self, make_orchestrator, transfer, store):
        orchestrator = make_orchestrator(distributed=True)
        orchestrator.run_cycle()
        baseline = orchestrator.state.previous_fingerprint
        _touch(orchestrator)
        transfer.results["up"] = [False]

        assert orchestrator.run_cycle() is CycleOutcome.FAILED
        assert orchestrator.state.previous_fingerprint == baseline
        # lock released even though the transfer failed
        assert LOCK_KEY not in store.objects

        assert orchestrator.run_cycle() is CycleOutcome.SUCCEEDED
        assert transfer.directions().count("up") == 2
        assert orchestrator.state.previous_fingerprint != baseline

    def test_failed_uplink_skips_downlink(self, make_orchestrator, transfer):
        orchestrator = make_orchestrator()
        orchestrator.run_cycle()
        _touch(orchestrator)
        transfer.results["up"] = [False]

        orchestrator.run_cycle()
        assert transfer.directions() == ["down", "up"]

    def test_failed_downlink_fails_cycle(self, make_orchestrator, transfer):
        orchestrator = make_orchestrator()
        transfer.results["down"] = [False]

        assert orchestrator.run_cycle() is CycleOutcome.FAILED

    def test_notification_failure_does_not_fail_cycle(self, make_orchestrator, notifier):
        notifier.result = False
        orchestrator = make_orchestrator(cdn_url_map="web-map")
        orchestrator.run_cycle()
        _touch(orchestrator)

        assert orchestrator.run_cycle() is CycleOutcome.SUCCEEDED
        assert len(notifier.calls) == 1

    def test_notification_exception_does_not_fail_cycle(self, make_orchestrator, notifier):
        def boom(target_id, path_pattern):
            raise RuntimeError("gcloud crashed")

        notifier.notify = boom
        orchestrator = make_orchestrator(cdn_url_map="web-map")
        orchestrator.run_cycle()
        _touch(orchestrator)

        assert orchestrator.run_cycle() is CycleOutcome.SUCCEEDED

    def test_unexpected_exception_becomes_failed_cycle(self, make_orchestrator):
        orchestrator = make_orchestrator()

        def broken(root, excluded=()):
            raise PermissionError("denied")

        orchestrator.detector.fingerprint = broken
        assert orchestrator.run_cycle() is CycleOutcome.FAILED


class TestDirections:
    def test_upload_only_never_downloads(self, make_orchestrator, transfer):
        orchestrator = make_orchestrator(upload_only=True)
        orchestrator.run_cycle()
        _touch(orchestrator)
        orchestrator.run_cycle()

        assert transfer.directions() == ["up"]

    def test_download_only_never_uploads(self, make_orchestrator, transfer):
        orchestrator = make_orchestrator(download_only=True)
        orchestrator.run_cycle()
        _touch(orchestrator)
        orchestrator.run_cycle()

        assert transfer.directions() == ["down", "down"]

    def test_remote_changes_do_not_trigger_uplink(self, make_orchestrator, transfer):
        orchestrator = make_orchestrator()
        orchestrator.run_cycle()

        def pull(direction, root):
            if direction is SyncDirection.DOWN:
                (root / "from-peer.txt").write_text("peer")

        transfer.on_transfer = pull
        orchestrator.run_cycle()
        transfer.on_transfer = None
        orchestrator.run_cycle()

        assert "up" not in transfer.directions()

    def test_notify_on_any_change_uploads_and_notifies_remote_changes(self, make_orchestrator, transfer, notifier):
        orchestrator = make_orchestrator(cdn_url_map="web-map", notify_on_any_change=True)
        orchestrator.run_cycle()

        def pull(direction, root):
            if direction is SyncDirection.DOWN:
                (root / "from-peer.txt").write_text("peer")

        transfer.on_transfer = pull
        orchestrator.run_cycle()
        transfer.on_transfer = None
        orchestrator.run_cycle()

        assert "up" in transfer.directions()
        assert notifier.calls == [("web-map", "/*")]

    def test_download_options_exclude_lock_in_distributed_mode(self, make_orchestrator, transfer):
        orchestrator = make_orchestrator(distributed=True)
        orchestrator.run_cycle()

        options = transfer.calls[0][3]
        assert any(Settings.LOCK_FILE_NAME.replace(".", r"\.") in opt for opt in options)

    def test_lock_object_kept_in_tree_while_deleting_upload(self, make_orchestrator, transfer, store):
        orchestrator = make_orchestrator(
            distributed=True,
            transfer_options_up=("--delete-unmatched-destination-objects",),
        )
        orchestrator.run_cycle()
        _touch(orchestrator)
        lock_copy = orchestrator.config.local_root / Settings.LOCK_FILE_NAME

        seen = []
        transfer.on_transfer = lambda direction, root: seen.append(
            (direction, lock_copy.exists() and lock_copy.read_text())
        )

        assert orchestrator.run_cycle() is CycleOutcome.SUCCEEDED
        assert seen[0] == (SyncDirection.UP, "node-a")
        assert not lock_copy.exists()
        assert "--delete-unmatched-destination-objects" in transfer.calls[1][3]

    def test_deleting_upload_skipped_when_lock_copy_fails(self, make_orchestrator, transfer, store):
        orchestrator = make_orchestrator(
            distributed=True,
            transfer_options_up=("--delete-unmatched-destination-objects",),
        )
        orchestrator.run_cycle()
        _touch(orchestrator)
        store.download_file = lambda gcs_path, local_path: False

        assert orchestrator.run_cycle() is CycleOutcome.FAILED
        assert "up" not in transfer.directions()
        assert LOCK_KEY not in store.objects


class TestLoop:
    def test_failure_ceiling_exits_after_exactly_n(self, make_orchestrator, transfer):
        orchestrator = make_orchestrator(max_consecutive_failures=3)
        transfer.results["down"] = [False] * 10

        assert orchestrator.run_loop() == ExitCode.FAILURE
        assert orchestrator.state.cycles == 3
        assert orchestrator.state.consecutive_failures == 3

    def test_success_resets_failure_counter(self, make_orchestrator, transfer):
        orchestrator = make_orchestrator(max_consecutive_failures=2)
        transfer.results["down"] = [False, True, False, False]

        assert orchestrator.run_loop() == ExitCode.FAILURE
        assert orchestrator.state.cycles == 4

    def test_unlimited_failures_never_exit_on_their_own(self, make_orchestrator, transfer, cancel_token):
        orchestrator = make_orchestrator(max_consecutive_failures=0)
        transfer.results["down"] = [False] * 25

        def cancel_during_twenty_first(direction, root):
            if len(transfer.calls) > 20:
                cancel_token.cancel("SIGTERM")

        transfer.on_transfer = cancel_during_twenty_first

        assert orchestrator.run_loop() == ExitCode.OK
        assert orchestrator.state.cycles == 21
        assert orchestrator.state.consecutive_failures == 20

    def test_termination_performs_one_final_upload(self, make_orchestrator, transfer, cancel_token):
        orchestrator = make_orchestrator()
        orchestrator.run_cycle()
        _touch(orchestrator)
        cancel_token.cancel("SIGINT")

        assert orchestrator.run_loop() == ExitCode.OK
        assert transfer.directions() == ["down", "up"]
        assert orchestrator.state.termination_requested
        assert orchestrator.state.cycles == 0

    def test_termination_during_lock_backoff_still_uploads(
        self, make_orchestrator, transfer, store, cancel_token
    ):
        orchestrator = make_orchestrator(
            distributed=True, max_consecutive_failures=1, lock_max_wait_seconds=180
        )
        orchestrator.run_cycle()
        store.put(LOCK_KEY, "node-b")
        _touch(orchestrator)

        def signal_while_waiting(timeout):
            cancel_token.cancel("SIGTERM")
            store.delete_file(LOCK_KEY)
            return True

        cancel_token.wait = signal_while_waiting

        assert orchestrator.run_loop() == ExitCode.OK
        assert orchestrator.state.consecutive_failures == 0
        assert transfer.directions() == ["down", "up"]
        assert LOCK_KEY not in store.objects

    def test_termination_interrupts_poll_sleep(self, make_orchestrator, transfer):
        orchestrator = make_orchestrator(poll_interval_seconds=3600)
        orchestrator.cancel_token = CancellationToken()

        def signal():
            _touch(orchestrator)
            orchestrator.cancel_token.cancel("SIGINT")

        timer = threading.Timer(0.2, signal)

        def start_timer_after_download(direction, root):
            if direction is SyncDirection.DOWN:
                timer.start()

        transfer.on_transfer = start_timer_after_download
        started = time.monotonic()
        try:
            result = orchestrator.run_loop()
        finally:
            timer.cancel()

        assert result == ExitCode.OK
        assert time.monotonic() - started < 30
        assert orchestrator.state.cycles == 1
        assert transfer.directions() == ["down", "up"]

    def test_termination_before_baseline_uploads_unconditionally(
        self, make_orchestrator, transfer, notifier, cancel_token
    ):
        orchestrator = make_orchestrator(cdn_url_map="web-map")
        cancel_token.cancel("SIGTERM")

        assert orchestrator.run_loop() == ExitCode.OK
        assert transfer.directions() == ["up"]
        assert orchestrator.state.has_baseline
        assert notifier.calls

    def test_termination_in_download_only_mode_skips_upload(self, make_orchestrator, transfer, cancel_token):
        orchestrator = make_orchestrator(download_only=True)
        cancel_token.cancel("SIGTERM")

        assert orchestrator.run_loop() == ExitCode.OK
        assert transfer.calls == []

    def test_single_shot_runs_once(self, make_orchestrator, transfer):
        orchestrator = make_orchestrator(poll_interval_seconds=0)

        assert orchestrator.run_loop() == ExitCode.OK
        assert orchestrator.state.cycles == 1
        assert transfer.directions() == ["down"]

    def test_single_shot_failure_exits_non_zero(self, make_orchestrator, transfer):
        orchestrator = make_orchestrator(poll_interval_seconds=0, max_consecutive_failures=0)
        transfer.results["down"] = [False]

        assert orchestrator.run_loop() == ExitCode.FAILURE
        assert orchestrator.state.cycles == 1


class TestRun:
    def test_invalid_config_exits_before_loop(self, make_orchestrator, transfer):
        orchestrator = make_orchestrator(poll_interval_seconds=5000)

        assert orchestrator.run() == ExitCode.FAILURE
        assert transfer.calls == []

    def test_missing_transfer_tool_fails_validation(self, make_orchestrator, transfer):
        transfer.available = False
        orchestrator = make_orchestrator(poll_interval_seconds=0)

        assert orchestrator.run() == ExitCode.FAILURE

    def test_unwritable_bucket_fails_validation(self, make_orchestrator, store):
        store.fail_write = True
        orchestrator = make_orchestrator(poll_interval_seconds=0)

        assert orchestrator.run() == ExitCode.FAILURE

    def test_invalid_cdn_target_fails_validation(self, make_orchestrator, notifier):
        notifier.valid_target = False
        orchestrator = make_orchestrator(poll_interval_seconds=0, cdn_url_map="missing-map")

        assert orchestrator.run() == ExitCode.FAILURE

    def test_distributed_lock_round_trip_before_loop(self, make_orchestrator, store):
        orchestrator = make_orchestrator(poll_interval_seconds=0, distributed=True)

        assert orchestrator.run() == ExitCode.OK
        assert LOCK_KEY in store.writes
        assert LOCK_KEY not in store.objects

    def test_distributed_validation_fails_when_peer_holds_lock(self, make_orchestrator, store):
        store.put(LOCK_KEY, "node-b")
        orchestrator = make_orchestrator(poll_interval_seconds=0, distributed=True)

        assert orchestrator.run() == ExitCode.FAILURE

    def test_init_sync_down_runs_before_loop(self, make_orchestrator, transfer):
        orchestrator = make_orchestrator(poll_interval_seconds=0, init_sync_down=True)

        assert orchestrator.run() == ExitCode.OK
        assert transfer.directions() == ["down", "down"]

    def test_init_sync_up_runs_under_lock(self, make_orchestrator, transfer, store):
        orchestrator = make_orchestrator(poll_interval_seconds=0, init_sync_up=True, distributed=True)

        assert orchestrator.run() == ExitCode.OK
        assert transfer.directions() == ["up", "down"]
        assert LOCK_KEY not in store.objects

    def test_failed_initial_sync_exits_non_zero(self, make_orchestrator, transfer):
        transfer.results["down"] = [False]
        orchestrator = make_orchestrator(poll_interval_seconds=0, init_sync_down=True)

        assert orchestrator.run() == ExitCode.FAILURE
        assert transfer.directions() == ["down"]
