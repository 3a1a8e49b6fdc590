from dataclasses import dataclass

# Import logger from config
from config import logger
from utils import utc_now, normalize_base_url, read_bytes
from vsix_package import open_package, read_manifest, extract_icon, MANIFEST_ENTRY_NAME
from gallery_feed import GalleryEntry, load_feed, build_entry, merge_entry, serialize_feed


@dataclass
class FeedUpdate:
    """Outcome of merging one package into the gallery feed."""
    feed: bytes
    blob_name: str
    icon: bytes | None = None
    entry: GalleryEntry | None = None
    skipped: bool = False
    feed_recovered: bool = False
    recovery_reason: str | None = None

    @property
    def icon_blob_name(self):
        return f"{self.blob_name}.png" if self.icon is not None else None

    def write(self, feed_stream, icon_stream=None):
        """Writes the updated feed (and icon, when there is one) to binary streams."""
        feed_stream.write(self.feed)
        if icon_stream is not None and self.icon is not None:
            icon_stream.write(self.icon)


class GalleryFeedMerger:
    """Updates a Visual Studio gallery Atom feed with VSIX packages.

    The merge is a pure function of its inputs and the clock. It reads the
    current feed and returns the new one, so callers that store the feed must
    serialize the read-merge-write cycle themselves (see feed_store.publish_package),
    otherwise concurrent publishes lose each other's entries.
    """

    def __init__(self, storage_base_url, feed_id="Gallery", feed_title="Gallery",
                 clock=utc_now, preserve_published=False):
        """
        Args:
            storage_base_url (str): Base URL the blobs are served from. Used to build the package and icon links.
            feed_id (str): Feed identifier written to the Atom document.
            feed_title (str): Feed title written to the Atom document.
            clock (callable): Returns the current UTC datetime.
            preserve_published (bool): Keep the <published> time of an entry when its package is republished.
        """
        if storage_base_url is None or not str(storage_base_url).strip():
            raise ValueError("storage_base_url is required.")
        self.storage_base_url = normalize_base_url(str(storage_base_url).strip())
        self.feed_id = feed_id
        self.feed_title = feed_title
        self.clock = clock
        self.preserve_published = preserve_published

    def update_feed(self, vsix_blob, vsix_blob_name, current_feed=None):
        """Merges the package into the feed.

        Args:
            vsix_blob: The VSIX package, as bytes or a binary stream.
            vsix_blob_name (str): Name of the stored package without its extension. The
                download link is <base>/<name>.vsix and the icon link <base>/<name>.png.
            current_feed: The current feed as bytes or a binary stream, or None if there is none yet.

        Returns:
            FeedUpdate: The updated feed and the icon extracted from the package, if any.

        Raises:
            ValueError: If the package or its name is missing.
            PackageError: If the package is not a zip archive.
            InvalidManifestError: If the manifest lacks required metadata.
        """
        if vsix_blob is None:
            raise ValueError("vsix_blob is required.")
        if not vsix_blob_name:
            raise ValueError("vsix_blob_name is required.")

        logger.info(f"Updating gallery feed with package {vsix_blob_name}...")
        now = self.clock()
        current_feed = read_bytes(current_feed)
        loaded = load_feed(current_feed, self.feed_id, self.feed_title, now)
        feed = loaded.feed

        with open_package(vsix_blob) as archive:
            manifest = read_manifest(archive)
            if manifest is None:
                logger.warning(f"  Package {vsix_blob_name} has no {MANIFEST_ENTRY_NAME}. Feed left unchanged.")
                # A usable feed is handed back as given, title and id included
                unchanged = serialize_feed(feed) if loaded.recovered or current_feed is None else current_feed
                return FeedUpdate(
                    feed=unchanged,
                    blob_name=vsix_blob_name,
                    skipped=True,
                    feed_recovered=loaded.recovered,
                    recovery_reason=loaded.reason,
                )
            icon = extract_icon(archive, manifest.icon_path)

        published = None
        if self.preserve_published:
            previous = feed.find_entry(manifest.id)
            if previous is not None:
                published = previous.published

        entry = build_entry(manifest, vsix_blob_name, self.storage_base_url, icon is not None, now, published)
        merge_entry(feed, entry, now)
        logger.info(f"  Published {manifest.id} {manifest.version} ({len(feed.entry_ids())} entries in feed).")

        return FeedUpdate(
            feed=serialize_feed(feed),
            blob_name=vsix_blob_name,
            icon=icon,
            entry=entry,
            feed_recovered=loaded.recovered,
            recovery_reason=loaded.reason,
        )
