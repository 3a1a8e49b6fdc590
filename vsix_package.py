import io
import posixpath
import zipfile
import zlib
from dataclasses import dataclass

from lxml import etree

# Import logger from config
from config import logger
from utils import read_bytes

# XML namespace of a VSIX extension manifest.
VSIX_NS = "http://schemas.microsoft.com/developer/vsx-schema/2011"
MANIFEST_ENTRY_NAME = "extension.vsixmanifest"

REQUIRED_IDENTITY_ATTRIBUTES = ('Id', 'Version', 'Publisher')
REQUIRED_METADATA_ELEMENTS = ('DisplayName', 'Description')


class PackageError(Exception):
    """Raised when a VSIX package can't be opened or read."""


class InvalidManifestError(PackageError):
    """Raised when extension.vsixmanifest is present but lacks required metadata."""


@dataclass(frozen=True)
class PackageManifest:
    id: str
    version: str
    publisher: str
    display_name: str
    description: str
    icon_path: str | None = None


def _vsix(tag):
    return f"{{{VSIX_NS}}}{tag}"


def _safe_parser():
    return etree.XMLParser(resolve_entities=False, no_network=True)


def open_package(source):
    """Opens a VSIX package (bytes or a binary stream) for reading named entries.

    Raises:
        PackageError: If the input is not a zip archive.
    """
    if source is None:
        raise ValueError("A VSIX package is required.")
    data = read_bytes(source)
    try:
        return zipfile.ZipFile(io.BytesIO(data))
    except zipfile.BadZipFile as e:
        raise PackageError(f"Not a valid VSIX archive: {e}") from e


def read_manifest(archive):
    """Reads the package manifest from an open archive.

    Returns None when the archive has no extension.vsixmanifest entry at its root.

    Raises:
        PackageError: If the entry exists but can't be decompressed.
    """
    try:
        data = archive.read(MANIFEST_ENTRY_NAME)
    except KeyError:
        return None
    except (zipfile.BadZipFile, zlib.error, EOFError, OSError) as e:
        raise PackageError(f"Could not read {MANIFEST_ENTRY_NAME}: {e}") from e
    return parse_manifest(data)


def parse_manifest(data):
    """Parses the contents of an extension.vsixmanifest into a PackageManifest.

    Raises:
        InvalidManifestError: If the document is malformed or a required field is missing.
    """
    try:
        root = etree.fromstring(data, parser=_safe_parser())
    except (etree.XMLSyntaxError, ValueError) as e:
        raise InvalidManifestError(f"Malformed {MANIFEST_ENTRY_NAME}: {e}") from e

    metadata = root.find(_vsix('Metadata'))
    if metadata is None:
        raise InvalidManifestError(f"{MANIFEST_ENTRY_NAME} has no Metadata element.")
    identity = metadata.find(_vsix('Identity'))
    if identity is None:
        raise InvalidManifestError(f"{MANIFEST_ENTRY_NAME} has no Metadata/Identity element.")

    missing = [f"Identity/@{name}" for name in REQUIRED_IDENTITY_ATTRIBUTES
               if not (identity.get(name) or '').strip()]
    missing += [name for name in REQUIRED_METADATA_ELEMENTS
                if metadata.find(_vsix(name)) is None]
    if missing:
        raise InvalidManifestError(f"{MANIFEST_ENTRY_NAME} is missing required fields: {', '.join(missing)}")

    icon = metadata.find(_vsix('Icon'))
    icon_path = (icon.text or '').strip() if icon is not None else ''

    return PackageManifest(
        id=identity.get('Id').strip(),
        version=identity.get('Version').strip(),
        publisher=identity.get('Publisher').strip(),
        display_name=(metadata.find(_vsix('DisplayName')).text or '').strip(),
        description=(metadata.find(_vsix('Description')).text or '').strip(),
        icon_path=icon_path or None,
    )


def _normalize_entry_name(path):
    name = path.replace('\\', '/')
    while name.startswith('./'):
        name = name[2:]
    return posixpath.normpath(name.lstrip('/'))


def extract_icon(archive, icon_path):
    """Extracts the icon referenced by the manifest, if any.

    Failures never propagate: a missing or unreadable entry just means no icon.
    """
    if not icon_path:
        return None

    candidates = [icon_path]
    normalized = _normalize_entry_name(icon_path)
    if normalized != icon_path:
        candidates.append(normalized)

    for name in candidates:
        try:
            return archive.read(name)
        except KeyError:
            continue
        except Exception as e:
            logger.warning(f"  Could not extract icon '{name}' from package: {e}. Publishing without an icon.")
            return None

    logger.warning(f"  Icon '{icon_path}' declared in the manifest was not found in the package. Publishing without an icon.")
    return None
