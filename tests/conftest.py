import io
import os
import struct
import sys
import zipfile

import pytest

# Add the project root directory to the Python path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
sys.path.insert(0, project_root)

ICON_BYTES = b'\x89PNG\r\n\x1a\nfake-icon-data'

MANIFEST_TEMPLATE = """<?xml version="1.0" encoding="utf-8"?>
<PackageManifest Version="2.0.0" xmlns="http://schemas.microsoft.com/developer/vsx-schema/2011" xmlns:d="http://schemas.microsoft.com/developer/vsx-schema-design/2011">
  <Metadata>
    <Identity Id="{id}" Version="{version}" Language="en-US" Publisher="{publisher}" />
    <DisplayName>{display_name}</DisplayName>
    <Description xml:space="preserve">{description}</Description>
    {icon}
  </Metadata>
  <Installation>
    <InstallationTarget Id="Microsoft.VisualStudio.Community" Version="[15.0]" />
  </Installation>
</PackageManifest>
"""


def manifest_xml(id="Sample", version="1.0.0", publisher="kzu", display_name="Sample",
                 description="desc", icon="Icon.png"):
    icon_element = f"<Icon>{icon}</Icon>" if icon else ""
    return MANIFEST_TEMPLATE.format(id=id, version=version, publisher=publisher,
                                    display_name=display_name, description=description,
                                    icon=icon_element).encode('utf-8')


def build_vsix(manifest=None, files=None, include_icon=True, icon_name="Icon.png"):
    """Builds an in-memory VSIX. manifest=None writes the default sample manifest,
    manifest=False leaves it out."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, 'w', zipfile.ZIP_DEFLATED) as archive:
        if manifest is None:
            manifest = manifest_xml()
        if manifest is not False:
            archive.writestr('extension.vsixmanifest', manifest)
        archive.writestr('[Content_Types].xml', '<Types xmlns="http://schemas.openxmlformats.org/package/2006/content-types" />')
        if include_icon:
            archive.writestr(icon_name, ICON_BYTES)
        for name, data in (files or {}).items():
            archive.writestr(name, data)
    return buffer.getvalue()


def corrupt_entry(data, name):
    """Overwrites the compressed bytes of one archive entry so inflating it fails."""
    with zipfile.ZipFile(io.BytesIO(data)) as archive:
        info = archive.getinfo(name)
    # Local file header is 30 bytes followed by the file name and extra field
    name_length, extra_length = struct.unpack('<HH', data[info.header_offset + 26:info.header_offset + 30])
    start = info.header_offset + 30 + name_length + extra_length
    corrupted = bytearray(data)
    # 0xff starts a deflate block with the reserved block type
    corrupted[start:start + info.compress_size] = b'\xff' * info.compress_size
    return bytes(corrupted)


@pytest.fixture
def make_vsix():
    def _make(version="1.0.0", id="Sample", icon="Icon.png", include_icon=True, **manifest_fields):
        manifest = manifest_xml(id=id, version=version, icon=icon, **manifest_fields)
        return build_vsix(manifest=manifest, include_icon=include_icon, icon_name=icon or "Icon.png")
    return _make
