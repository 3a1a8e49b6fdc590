"""Atom feed document for a Visual Studio extension gallery.

The feed is kept as an lxml tree so that anything already present in an
existing feed (extra elements, attributes, namespaces) survives a merge.
"""
import datetime
from dataclasses import dataclass, field

from lxml import etree

# Import logger from config
from config import logger
from utils import format_timestamp, parse_timestamp, read_bytes

# Atom 1.0 XML.
ATOM_NS = "http://www.w3.org/2005/Atom"
# XML namespace of the custom Visual Studio gallery elements.
GALLERY_NS = "http://schemas.microsoft.com/developer/vsx-syndication-schema/2010"

CONTENT_TYPE = "application/octet-stream"


def atom(tag):
    return f"{{{ATOM_NS}}}{tag}"


def gallery(tag):
    return f"{{{GALLERY_NS}}}{tag}"


def _feed_parser():
    # Dropping blank text lets pretty_print re-indent parsed and new elements the same way.
    return etree.XMLParser(remove_blank_text=True, resolve_entities=False, no_network=True)


def _child_text(element, tag):
    child = element.find(tag)
    if child is None or child.text is None:
        return ''
    return child.text


@dataclass
class GalleryEntry:
    """One published package version visible in the feed."""
    id: str
    title: str
    summary: str
    download_link: str
    published: datetime.datetime | None
    updated: datetime.datetime | None
    author_name: str
    extension_id: str
    extension_version: str
    icon_link: str | None = None
    references: list = field(default_factory=list)

    @property
    def content_link(self):
        return self.download_link

    @classmethod
    def from_element(cls, element):
        """Reads an <entry> element back. Missing children read as empty."""
        links = {link.get('rel', 'alternate'): link.get('href') for link in element.findall(atom('link'))}
        author = element.find(atom('author'))
        vsix = element.find(gallery('Vsix'))
        references = []
        if vsix is not None:
            refs = vsix.find(gallery('References'))
            if refs is not None:
                references = [_child_text(ref, gallery('Id')) for ref in refs.findall(gallery('Reference'))]
        return cls(
            id=_child_text(element, atom('id')),
            title=_child_text(element, atom('title')),
            summary=_child_text(element, atom('summary')),
            download_link=links.get('alternate') or '',
            icon_link=links.get('icon'),
            published=parse_timestamp(_child_text(element, atom('published'))),
            updated=parse_timestamp(_child_text(element, atom('updated'))),
            author_name=_child_text(author, atom('name')) if author is not None else '',
            extension_id=_child_text(vsix, gallery('Id')) if vsix is not None else '',
            extension_version=_child_text(vsix, gallery('Version')) if vsix is not None else '',
            references=references,
        )

    def write_to(self, entry):
        """Fills an empty <entry> element that is already attached to a feed."""
        etree.SubElement(entry, atom('id')).text = self.id
        etree.SubElement(entry, atom('title'), type='text').text = self.title
        etree.SubElement(entry, atom('link'), rel='alternate', href=self.download_link)
        etree.SubElement(entry, atom('summary'), type='text').text = self.summary
        etree.SubElement(entry, atom('published')).text = format_timestamp(self.published)
        etree.SubElement(entry, atom('updated')).text = format_timestamp(self.updated)
        author = etree.SubElement(entry, atom('author'))
        etree.SubElement(author, atom('name')).text = self.author_name
        etree.SubElement(entry, atom('content'), type=CONTENT_TYPE, src=self.content_link)
        if self.icon_link:
            etree.SubElement(entry, atom('link'), rel='icon', href=self.icon_link)

        vsix = etree.SubElement(entry, gallery('Vsix'), nsmap={None: GALLERY_NS})
        etree.SubElement(vsix, gallery('Id')).text = self.extension_id
        etree.SubElement(vsix, gallery('Version')).text = self.extension_version
        references = etree.SubElement(vsix, gallery('References'))
        for reference in self.references:
            ref = etree.SubElement(references, gallery('Reference'))
            etree.SubElement(ref, gallery('Id')).text = reference
        return entry


class GalleryFeed:
    """The gallery's Atom <feed> document."""

    def __init__(self, root):
        self.root = root

    def _metadata(self, tag, **attrib):
        # Returns the feed-level element, creating it ahead of the first entry if missing.
        element = self.root.find(atom(tag))
        if element is None:
            element = etree.SubElement(self.root, atom(tag), **attrib)
            first_entry = self.root.find(atom('entry'))
            if first_entry is not None:
                first_entry.addprevious(element)
        return element

    @property
    def title(self):
        return _child_text(self.root, atom('title'))

    @title.setter
    def title(self, value):
        element = self._metadata('title', type='text')
        element.set('type', 'text')
        element.text = value

    @property
    def id(self):
        return _child_text(self.root, atom('id'))

    @id.setter
    def id(self, value):
        self._metadata('id').text = value

    @property
    def updated(self):
        return parse_timestamp(_child_text(self.root, atom('updated')))

    @updated.setter
    def updated(self, value):
        self._metadata('updated').text = format_timestamp(value)

    def has_updated(self):
        return self.root.find(atom('updated')) is not None

    def entry_ids(self):
        return [_child_text(entry, atom('id')) for entry in self.root.iterchildren(atom('entry'))]

    def entries(self):
        return [GalleryEntry.from_element(entry) for entry in self.root.iterchildren(atom('entry'))]

    def find_entry(self, entry_id):
        for entry in self.root.iterchildren(atom('entry')):
            if _child_text(entry, atom('id')) == entry_id:
                return GalleryEntry.from_element(entry)
        return None

    def remove_entry(self, entry_id):
        """Removes every entry with the given id and returns how many were removed."""
        matches = [entry for entry in self.root.iterchildren(atom('entry'))
                   if _child_text(entry, atom('id')) == entry_id]
        for entry in matches:
            self.root.remove(entry)
        return len(matches)

    def insert_entry(self, gallery_entry):
        """Adds the entry ahead of all existing entries."""
        first_entry = self.root.find(atom('entry'))
        element = etree.SubElement(self.root, atom('entry'))
        gallery_entry.write_to(element)
        if first_entry is not None:
            first_entry.addprevious(element)
        return element


@dataclass
class FeedLoadResult:
    feed: GalleryFeed
    recovered: bool = False
    reason: str | None = None


def new_feed(feed_id, feed_title, now):
    """Creates an empty gallery feed."""
    root = etree.Element(atom('feed'), nsmap={None: ATOM_NS})
    etree.SubElement(root, atom('title'), type='text').text = feed_title
    etree.SubElement(root, atom('id')).text = feed_id
    etree.SubElement(root, atom('updated')).text = format_timestamp(now)
    return GalleryFeed(root)


def _recover(feed_id, feed_title, now, reason):
    logger.warning(f"  Existing gallery feed could not be used ({reason}). Starting a new feed; previous entries are discarded.")
    return FeedLoadResult(new_feed(feed_id, feed_title, now), recovered=True, reason=reason)


def load_feed(data, feed_id, feed_title, now):
    """Obtains the working feed document.

    Args:
        data: The existing feed as bytes or a binary stream, or None if there is none yet.
        feed_id (str): Feed id to set on the document.
        feed_title (str): Feed title to set on the document.
        now (datetime): Used for a newly created <updated> element.

    Returns:
        FeedLoadResult: The feed, and whether an unusable existing feed was replaced.
    """
    if data is None:
        logger.info("  No existing gallery feed. Creating a new one.")
        return FeedLoadResult(new_feed(feed_id, feed_title, now))

    data = read_bytes(data)
    if not data:
        return _recover(feed_id, feed_title, now, "feed is empty")

    try:
        root = etree.fromstring(data, parser=_feed_parser())
    except (etree.XMLSyntaxError, ValueError) as e:
        return _recover(feed_id, feed_title, now, f"malformed XML: {e}")

    if root.tag != atom('feed'):
        return _recover(feed_id, feed_title, now, f"unexpected root element {root.tag}")

    feed = GalleryFeed(root)
    feed.title = feed_title
    feed.id = feed_id
    if not feed.has_updated():
        feed.updated = now
    logger.info(f"  Loaded existing gallery feed with {len(feed.entry_ids())} entries.")
    return FeedLoadResult(feed)


def build_entry(manifest, blob_name, base_url, icon_present, now, published=None):
    """Builds the feed entry for a package stored as <base_url><blob_name>.vsix."""
    download_link = f"{base_url}{blob_name}.vsix"
    return GalleryEntry(
        id=manifest.id,
        title=manifest.display_name,
        summary=manifest.description,
        download_link=download_link,
        icon_link=f"{base_url}{blob_name}.png" if icon_present else None,
        published=published or now,
        updated=now,
        author_name=manifest.publisher,
        extension_id=manifest.id,
        extension_version=manifest.version,
        references=[],
    )


def merge_entry(feed, entry, now):
    """Upserts the entry: drops any entry with the same id and puts the new one first."""
    removed = feed.remove_entry(entry.id)
    if removed:
        logger.info(f"  Replacing existing entry for '{entry.id}'.")
    feed.insert_entry(entry)
    feed.updated = now
    return feed


def serialize_feed(feed):
    """Serializes the feed as indented UTF-8 XML."""
    return etree.tostring(feed.root, pretty_print=True, xml_declaration=True, encoding='utf-8')
