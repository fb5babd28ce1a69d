import shlex
import signal
from pathlib import Path
from typing import List, Optional

import typer

from config.settings import Settings, SyncConfig
from core.dependencies import DependencyContainer
from data.errors import ValidationError
from data.services.change_detector import ChangeDetector
from data.storage.object_lock import LockStatus
from utils.node_identity import NodeIdentityResolver

app = typer.Typer(
    name="bucket-sync",
    help="Bidirectional synchronization between a local directory and a Google Cloud Storage prefix.",
    add_completion=False
)


def _split_paths(values: Optional[List[str]]) -> tuple:
    """Accept repeated options as well as '|'-separated lists, expanding '~'."""
    paths = []
    for value in values or []:
        paths.extend(str(Path(p).expanduser()) for p in value.split("|") if p)
    return tuple(paths)


def _split_options(values: Optional[List[str]]) -> tuple:
    options = []
    for value in values or []:
        options.extend(shlex.split(value))
    return tuple(options)


def _install_signal_handlers(container: DependencyContainer) -> None:
    def request_termination(signum, frame):
        container.cancel_token.cancel(signal.Signals(signum).name)

    signal.signal(signal.SIGINT, request_termination)
    signal.signal(signal.SIGTERM, request_termination)


@app.command()
def sync(
    local_path: str = typer.Argument(..., envvar="LOCAL_PATH", help="Local directory to synchronize - e.g. /path/to/local/dir"),
    remote_uri: str = typer.Argument(..., envvar="GCS_URI", help="Remote URI - e.g. gs://mybucket/remote/dir"),
    dfs: bool = typer.Option(False, "--dfs", "-d", help="Coordinate uploads with other nodes through a lock object in the bucket."),
    lock_timeout: int = typer.Option(Settings.LOCK_STALE_AFTER_SECONDS, "--lock-timeout", "-t", envvar="BUCKET_SYNC_LOCK_TIMEOUT", help="Seconds after which another node's lock is considered stale and force released."),
    lock_wait: int = typer.Option(Settings.LOCK_MAX_WAIT_SECONDS, "--lock-wait", "-w", envvar="BUCKET_SYNC_LOCK_WAIT", help="Maximum seconds to wait for the lock before the cycle fails."),
    lock_jitter: int = typer.Option(Settings.LOCK_RETRY_JITTER_SECONDS, "--lock-jitter", help="Upper bound (secs) of the random sleep between lock attempts."),
    conditional_put: bool = typer.Option(False, "--conditional-put", help="Create the lock object with a create-only precondition instead of relying on read-back alone."),
    poll: int = typer.Option(Settings.POLL_INTERVAL_SECONDS, "--poll", "-p", envvar="BUCKET_SYNC_POLL", help="Seconds between synchronizations (0-3600). 0 runs a single cycle and exits."),
    max_failures: int = typer.Option(Settings.MAX_CONSECUTIVE_FAILURES, "--max-failures", "-x", help="Consecutive failed cycles before exiting (0 for infinite)."),
    exclude: Optional[List[str]] = typer.Option(None, "--exclude", "-s", help="Directory inside LOCAL_PATH to leave out of change detection. Repeat, or separate with '|'."),
    upload_only: bool = typer.Option(False, "--upload-only", help="Only synchronize LOCAL_PATH -> REMOTE_URI."),
    download_only: bool = typer.Option(False, "--download-only", help="Only synchronize REMOTE_URI -> LOCAL_PATH."),
    init_sync_up: bool = typer.Option(False, "--init-sync-up", "-u", help="Upload unconditionally once at startup."),
    init_sync_down: bool = typer.Option(False, "--init-sync-down", "-i", help="Download unconditionally once at startup."),
    notify_on_any_change: bool = typer.Option(False, "--notify-on-any-change", help="Also invalidate the CDN for changes pulled from the bucket."),
    cdn_url_map: Optional[str] = typer.Option(None, "--cdn-url-map", "-c", envvar="CDN_URL_MAP", help="Cloud CDN URL map to invalidate after uploads."),
    cdn_invalidation_path: str = typer.Option(Settings.CDN_INVALIDATION_PATH, "--cdn-invalidation-path", envvar="CDN_INVALIDATION_PATH", help="Path pattern to invalidate."),
    sync_opt: Optional[List[str]] = typer.Option(None, "--sync-opt", help="Extra 'gcloud storage rsync' option(s) for both directions."),
    sync_opt_up: Optional[List[str]] = typer.Option(None, "--sync-opt-up", help="Extra rsync option(s) for uploads only, e.g. --delete-unmatched-destination-objects."),
    sync_opt_down: Optional[List[str]] = typer.Option(None, "--sync-opt-down", help="Extra rsync option(s) for downloads only."),
    gcloud_opt: Optional[List[str]] = typer.Option(None, "--gcloud-opt", help="Global gcloud flag(s), e.g. --impersonate-service-account=..."),
    project: Optional[str] = typer.Option(None, "--project", envvar="GOOGLE_CLOUD_PROJECT", help="GCP project for storage and gcloud calls."),
    credentials: Optional[str] = typer.Option(None, "--credentials", help="Service account JSON file."),
    debug: str = typer.Option(Settings.LOG_LEVEL, "--debug", envvar="BUCKET_SYNC_DEBUG", help="Debug output level - one of ERROR (default), WARN, DEBUG or NONE."),
    log_dir: Optional[str] = typer.Option(None, "--log-dir", help="Also write rotating log files to this directory."),
):
    """
    Keep LOCAL_PATH and REMOTE_URI synchronized, polling for changes on both sides.
    """
    config = SyncConfig(
        local_path=local_path,
        remote_uri=remote_uri,
        distributed=dfs,
        lock_stale_after_seconds=lock_timeout,
        lock_max_wait_seconds=lock_wait,
        lock_retry_jitter_seconds=lock_jitter,
        lock_conditional_put=conditional_put,
        poll_interval_seconds=poll,
        max_consecutive_failures=max_failures,
        excluded_subpaths=_split_paths(exclude),
        upload_only=upload_only,
        download_only=download_only,
        init_sync_up=init_sync_up,
        init_sync_down=init_sync_down,
        notify_on_any_change=notify_on_any_change,
        cdn_url_map=cdn_url_map,
        cdn_invalidation_path=cdn_invalidation_path,
        transfer_options=_split_options(sync_opt),
        transfer_options_up=_split_options(sync_opt_up),
        transfer_options_down=_split_options(sync_opt_down),
        gcloud_options=_split_options(gcloud_opt),
        project=project,
        credentials_path=credentials,
        log_level=debug,
        log_dir=log_dir,
    )

    try:
        config.validate()
    except ValidationError as e:
        typer.secho(f"Error: {e.message}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    try:
        container = DependencyContainer(config)
        _install_signal_handlers(container)
        container.logger.debug(
            f"Initiating bucket-sync with the following runtime options: {config} "
            f"[uid={container.identity}] [lock={config.lock_uri}]"
        )
        exit_code = container.orchestrator.run()
    except Exception as e:
        typer.secho(f"An unexpected error occurred during sync: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    raise typer.Exit(code=exit_code)


@app.command()
def fingerprint(
    local_path: Path = typer.Argument(..., exists=True, file_okay=False, help="Directory to fingerprint."),
    exclude: Optional[List[str]] = typer.Option(None, "--exclude", "-s", help="Directory to leave out. Repeat, or separate with '|'."),
):
    """
    Print the content fingerprint used for change detection.
    """
    excluded = [p if p.is_absolute() else local_path / p for p in map(Path, _split_paths(exclude))]
    try:
        digest = ChangeDetector().fingerprint(local_path, excluded)
    except OSError as e:
        typer.secho(f"Unable to fingerprint {local_path}: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    typer.echo(digest)


@app.command()
def identity():
    """
    Print this node's identity (the lock ownership token).
    """
    typer.echo(NodeIdentityResolver().resolve())


@app.command()
def unlock(
    remote_uri: str = typer.Argument(..., envvar="GCS_URI", help="Remote URI whose lock should be released."),
    project: Optional[str] = typer.Option(None, "--project", envvar="GOOGLE_CLOUD_PROJECT"),
    credentials: Optional[str] = typer.Option(None, "--credentials"),
    debug: str = typer.Option("WARN", "--debug", envvar="BUCKET_SYNC_DEBUG"),
):
    """
    Release this node's lock on REMOTE_URI. Locks owned by other nodes are left alone.
    """
    config = SyncConfig(
        local_path=".",
        remote_uri=remote_uri,
        distributed=True,
        project=project,
        credentials_path=credentials,
        log_level=debug,
    )
    if not remote_uri.startswith(Settings.REMOTE_SCHEME) or not config.bucket:
        typer.secho(f"Error: {remote_uri} must look like gs://bucket[/prefix]", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    try:
        container = DependencyContainer(config)
        status = container.lock_client().release(config.bucket, config.lock_key, container.identity)
    except Exception as e:
        typer.secho(f"An unexpected error occurred during unlock: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    if status is not LockStatus.RELEASED:
        typer.secho(f"Lock {config.lock_uri} was not released.", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    typer.secho(f"Lock {config.lock_uri} released.", fg=typer.colors.GREEN)


def main():
    app()


if __name__ == "__main__":
    main()
