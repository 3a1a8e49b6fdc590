import hashlib
import os
import tempfile
import threading
from pathlib import Path
from typing import Protocol

# Import logger and constants from config
from config import logger, FEED_FILE_NAME, PUBLISH_MAX_ATTEMPTS
from utils import read_bytes


class ConcurrentUpdateError(Exception):
    """Raised when the stored feed changed between reading and writing it."""


class FeedStore(Protocol):
    """Storage the gallery feed lives in.

    write_feed must be an atomic compare-and-swap: it only replaces the feed if
    the stored version still equals expected_version (None meaning "no feed yet").
    """

    def read_feed(self) -> tuple[bytes | None, str | None]: ...

    def write_feed(self, data: bytes, expected_version: str | None) -> str: ...

    def write_blob(self, name: str, data: bytes) -> None: ...


class LocalFeedStore:
    """A FeedStore backed by a directory, e.g. one served as static files.

    The compare-and-swap is guarded by an in-process lock; separate processes
    sharing the directory need their own serialization.
    """

    def __init__(self, directory, feed_name=FEED_FILE_NAME):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self.feed_path = self.directory / feed_name
        self.lock = threading.Lock()

    @staticmethod
    def version_of(data):
        return hashlib.sha256(data).hexdigest()

    def read_feed(self):
        if not self.feed_path.exists():
            return None, None
        data = self.feed_path.read_bytes()
        return data, self.version_of(data)

    def write_feed(self, data, expected_version):
        with self.lock:
            _, current_version = self.read_feed()
            if current_version != expected_version:
                raise ConcurrentUpdateError(
                    f"Feed {self.feed_path} changed since it was read (expected {expected_version}, found {current_version})."
                )
            self._write_atomic(self.feed_path, data)
        return self.version_of(data)

    def write_blob(self, name, data):
        self._write_atomic(self.directory / name, data)

    def _write_atomic(self, path, data):
        fd, tmp_path = tempfile.mkstemp(dir=self.directory, prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, 'wb') as f:
                f.write(data)
            os.replace(tmp_path, path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise


def publish_package(store, gallery, vsix_blob, blob_name, max_attempts=PUBLISH_MAX_ATTEMPTS):
    """Runs one load-merge-store cycle against the store, retrying on write conflicts.

    Args:
        store (FeedStore): Where the feed and icon are kept.
        gallery (GalleryFeedMerger): Performs the merge.
        vsix_blob: The VSIX package, as bytes or a binary stream.
        blob_name (str): Name of the stored package without its extension.
        max_attempts (int): How many times to try before giving up on conflicts.

    Returns:
        FeedUpdate: The update that was stored (or skipped).

    Raises:
        ConcurrentUpdateError: If every attempt lost the race to another writer.
    """
    package = read_bytes(vsix_blob)
    for attempt in range(1, max_attempts + 1):
        current_feed, version = store.read_feed()
        update = gallery.update_feed(package, blob_name, current_feed)

        if update.skipped:
            logger.warning(f"Package {blob_name} was not published; nothing written.")
            return update
        if update.feed_recovered:
            logger.warning(f"  Stored feed was replaced with a new one: {update.recovery_reason}")

        try:
            store.write_feed(update.feed, version)
        except ConcurrentUpdateError as e:
            logger.warning(f"  Attempt {attempt}/{max_attempts} to store the feed conflicted: {e}")
            continue

        # Icon only after the feed is stored; a lost race writes nothing
        if update.icon is not None:
            store.write_blob(update.icon_blob_name, update.icon)

        logger.info(f"Successfully published {blob_name} to the gallery feed.")
        return update

    raise ConcurrentUpdateError(f"Could not publish {blob_name} after {max_attempts} attempts.")
