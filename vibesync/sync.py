#!/usr/bin/env python3
"""VibeTube Cross-Device Sync - Entry Point"""

import argparse
import asyncio
import fcntl
import logging
import os
import sys
import time
from dataclasses import asdict, dataclass
from pathlib import Path

from google.auth.credentials import AnonymousCredentials
from google.cloud import firestore

from vibesync.clients.firestore import FirestoreLedger
from vibesync.clients.identity import GoogleIdentityProvider, IdentityConfigError
from vibesync.clients.local_store import JsonLocalStore
from vibesync.clients.network import DEFAULT_CHECK_URL, NetworkMonitor
from vibesync.core.cache import LedgerCache
from vibesync.core.merge import PLAYLIST_RESOLUTIONS
from vibesync.core.models import SyncError, SyncErrorKind, SyncResult
from vibesync.core.retry import DEFAULT_BASE_DELAY, DEFAULT_MAX_ATTEMPTS, RetryController
from vibesync.core.status import write_running_status, write_status
from vibesync.core.sync_engine import SyncEngine

ACTIONS = ("sync", "upload", "download", "delete", "status")
DEFAULT_DATA_DIR = "/config/vibesync"
STALE_LOCK_SECONDS = 1800
CONSENT_VALUES = {"true": True, "yes": True, "on": True, "1": True,
                  "false": False, "no": False, "off": False, "0": False}

logger = logging.getLogger(__name__)


@dataclass
class SyncConfig:
    account_id: str
    project: str
    data_dir: Path
    refresh_token: str | None = None
    email: str = ""
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    base_delay: float = DEFAULT_BASE_DELAY
    connectivity_url: str = DEFAULT_CHECK_URL
    playlist_resolution: str = "local"
    consent: bool | None = None

    @property
    def status_file(self) -> Path:
        return self.data_dir / "sync_status.json"


def setup_logging(data_dir: Path) -> None:
    level = getattr(logging, os.environ.get("LOG_LEVEL", "INFO").upper(), logging.INFO)
    data_dir.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[
            logging.FileHandler(data_dir / "vibesync.log", encoding="utf-8"),
            logging.StreamHandler()
        ]
    )


def acquire_lock(lock_file: Path) -> int | None:
    try:
        # Check for stale lock (older than 30 min = likely orphaned)
        if lock_file.exists():
            age = time.time() - lock_file.stat().st_mtime
            if age > STALE_LOCK_SECONDS:
                logger.warning(f"Removing stale lock file (age: {age:.0f}s)")
                lock_file.unlink(missing_ok=True)

        fd = os.open(str(lock_file), os.O_CREAT | os.O_RDWR)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError:
            os.close(fd)
            return None
        os.write(fd, f"{os.getpid()}\n".encode())
        return fd
    except OSError:
        return None


def release_lock(fd: int, lock_file: Path) -> None:
    try:
        fcntl.flock(fd, fcntl.LOCK_UN)
        os.close(fd)
        lock_file.unlink(missing_ok=True)
    except OSError as e:
        logger.warning(f"Failed to release lock: {e}")


def load_config() -> SyncConfig:
    required = ["VIBESYNC_ACCOUNT_ID", "FIRESTORE_PROJECT"]
    missing = [var for var in required if not os.environ.get(var)]
    if missing:
        logger.error(f"Missing config: {', '.join(missing)}")
        sys.exit(1)

    try:
        max_attempts = int(os.environ.get("SYNC_MAX_ATTEMPTS", DEFAULT_MAX_ATTEMPTS))
        base_delay = float(os.environ.get("SYNC_BASE_DELAY", DEFAULT_BASE_DELAY))
    except ValueError as e:
        logger.error(f"Invalid retry config: {e}")
        sys.exit(1)

    if max_attempts < 1 or base_delay < 0:
        logger.error("SYNC_MAX_ATTEMPTS must be >= 1 and SYNC_BASE_DELAY >= 0")
        sys.exit(1)

    playlist_resolution = os.environ.get("PLAYLIST_RESOLUTION", "local")
    if playlist_resolution not in PLAYLIST_RESOLUTIONS:
        logger.error(f"PLAYLIST_RESOLUTION must be one of: {', '.join(PLAYLIST_RESOLUTIONS)}")
        sys.exit(1)

    consent = None
    raw_consent = os.environ.get("VIBESYNC_CONSENT", "").strip().lower()
    if raw_consent:
        if raw_consent not in CONSENT_VALUES:
            logger.error("VIBESYNC_CONSENT must be true or false")
            sys.exit(1)
        consent = CONSENT_VALUES[raw_consent]

    return SyncConfig(
        account_id=os.environ["VIBESYNC_ACCOUNT_ID"],
        project=os.environ["FIRESTORE_PROJECT"],
        data_dir=Path(os.environ.get("VIBESYNC_DATA_DIR", DEFAULT_DATA_DIR)),
        refresh_token=os.environ.get("GOOGLE_REFRESH_TOKEN") or None,
        email=os.environ.get("VIBESYNC_EMAIL", ""),
        max_attempts=max_attempts,
        base_delay=base_delay,
        connectivity_url=os.environ.get("CONNECTIVITY_URL", DEFAULT_CHECK_URL),
        playlist_resolution=playlist_resolution,
        consent=consent,
    )


def build_engine(config: SyncConfig) -> SyncEngine:
    """Composition root: every collaborator is constructed here and injected."""
    identity = GoogleIdentityProvider.from_refresh_token(
        config.account_id, config.refresh_token,
        config.data_dir / "client_secrets.json", email=config.email
    )
    user = identity.current()
    credentials = user.credentials if user and user.credentials else AnonymousCredentials()

    ledger = FirestoreLedger(
        firestore.AsyncClient(project=config.project, credentials=credentials),
        LedgerCache(config.data_dir / ".ledger_cache.json"),
    )
    store = JsonLocalStore(config.data_dir / "user_data.json")
    if config.consent is not None and store.has_consent() != config.consent:
        store.set_consent(config.consent)
        logger.info(f"Sync consent {'granted' if config.consent else 'withdrawn'}")

    return SyncEngine(
        store=store,
        identity=identity,
        network=NetworkMonitor(config.connectivity_url),
        ledger=ledger,
        retry=RetryController(config.max_attempts, config.base_delay),
        playlist_resolution=config.playlist_resolution,
    )


async def run_action(engine: SyncEngine, action: str) -> SyncResult:
    if action == "sync":
        return await engine.sync_bidirectional()
    if action == "upload":
        return await engine.upload()
    if action == "download":
        return await engine.download()
    if action == "delete":
        return await engine.delete_remote()
    if action == "status":
        status = await engine.get_status()
        logger.info(f"Status: {asdict(status)}")
        return SyncResult.ok(status)
    raise ValueError(f"Unknown action: {action}")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="vibesync", description="Sync engagement data across devices")
    parser.add_argument("action", nargs="?", default="sync", choices=ACTIONS)
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    setup_logging(Path(os.environ.get("VIBESYNC_DATA_DIR", DEFAULT_DATA_DIR)))
    config = load_config()

    lock_file = config.data_dir / f".sync_{config.account_id}.lock"
    lock_fd = acquire_lock(lock_file)
    if lock_fd is None:
        logger.warning("Another sync running for this account, exiting")
        return 0

    try:
        write_running_status(args.action, config.status_file)

        try:
            engine = build_engine(config)
        except IdentityConfigError as e:
            logger.error(f"Identity setup failed: {e}")
            write_status(args.action, SyncResult.failure(SyncError(SyncErrorKind.AUTH_EXPIRED, str(e))),
                         config.status_file)
            return 1

        logger.info(f"Running {args.action}...")
        result = asyncio.run(run_action(engine, args.action))
        write_status(args.action, result, config.status_file)

        if result.success:
            logger.info(f"{args.action} completed")
            return 0
        logger.warning(f"{args.action} failed ({result.kind.value}): {result.error.message}")
        return 1

    except Exception as e:
        logger.exception(f"Unexpected error: {e}")
        write_status(args.action, SyncResult.failure(SyncError(SyncErrorKind.UNKNOWN, f"Unexpected error: {e}")),
                     config.status_file)
        return 1
    finally:
        release_lock(lock_fd, lock_file)


def cli() -> None:
    sys.exit(main())


if __name__ == "__main__":
    cli()
