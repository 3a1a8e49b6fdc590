import pytest
from unittest.mock import patch
from lxml import etree

import main
from gallery_feed import ATOM_NS, GALLERY_NS
from conftest import ICON_BYTES, build_vsix, corrupt_entry, manifest_xml

XMLNS = {'a': ATOM_NS, 'x': GALLERY_NS}


@pytest.fixture
def packages(tmp_path):
    source = tmp_path / "packages"
    source.mkdir()
    first = source / "Sample.1.0.0.vsix"
    first.write_bytes(build_vsix(manifest=manifest_xml(version="1.0.0")))
    second = source / "Other.1.0.0.vsix"
    second.write_bytes(build_vsix(manifest=manifest_xml(id="Other", display_name="Other")))
    return first, second


def read_feed(store_dir, name="atom.xml"):
    return etree.fromstring((store_dir / name).read_bytes())


def test_publish_single_package(tmp_path, packages):
    store_dir = tmp_path / "gallery"
    code = main.main(["publish", str(packages[0]), "--store_dir", str(store_dir), "--base_url", "https://example"])

    assert code == 0
    feed = read_feed(store_dir)
    assert feed.xpath("string(a:entry/a:link[@rel='alternate']/@href)", namespaces=XMLNS) == "https://example/Sample.1.0.0.vsix"
    assert (store_dir / "Sample.1.0.0.vsix").read_bytes() == packages[0].read_bytes()
    assert (store_dir / "Sample.1.0.0.png").read_bytes() == ICON_BYTES


def test_publish_multiple_packages_newest_first(tmp_path, packages):
    store_dir = tmp_path / "gallery"
    code = main.main(["publish", str(packages[0]), str(packages[1]),
                      "--store_dir", str(store_dir), "--base_url", "https://example/",
                      "--feed_id", "urn:alpha", "--feed_title", "Alpha", "--feed_name", "extensions.xml"])

    assert code == 0
    feed = read_feed(store_dir, "extensions.xml")
    assert feed.xpath("a:entry/a:id/text()", namespaces=XMLNS) == ["Other", "Sample"]
    assert feed.findtext("a:title", namespaces=XMLNS) == "Alpha"
    assert feed.findtext("a:id", namespaces=XMLNS) == "urn:alpha"


def test_publish_custom_blob_name(tmp_path, packages):
    store_dir = tmp_path / "gallery"
    code = main.main(["publish", str(packages[0]), "--blob_name", "sample-latest",
                      "--store_dir", str(store_dir), "--base_url", "https://example/"])
    assert code == 0
    assert (store_dir / "sample-latest.vsix").exists()
    assert (store_dir / "sample-latest.png").exists()


def test_publish_blob_name_requires_single_package(tmp_path, packages):
    code = main.main(["publish", str(packages[0]), str(packages[1]), "--blob_name", "x",
                      "--store_dir", str(tmp_path), "--base_url", "https://example/"])
    assert code == 1


def test_publish_requires_base_url(tmp_path, packages):
    with patch('main.logger') as mock_logger:
        code = main.main(["publish", str(packages[0]), "--store_dir", str(tmp_path), "--base_url", ""])
    assert code == 1
    mock_logger.error.assert_called_once()


def test_publish_invalid_package(tmp_path):
    bad = tmp_path / "bad.vsix"
    bad.write_bytes(b"not a zip")
    code = main.main(["publish", str(bad), "--store_dir", str(tmp_path / "gallery"), "--base_url", "https://example/"])
    assert code == 1


def test_publish_invalid_package_stores_nothing(tmp_path):
    bad = tmp_path / "bad.vsix"
    bad.write_bytes(b"not a zip")
    store_dir = tmp_path / "gallery"
    main.main(["publish", str(bad), "--store_dir", str(store_dir), "--base_url", "https://example/"])
    assert not (store_dir / "bad.vsix").exists()


def test_publish_corrupt_manifest(tmp_path):
    bad = tmp_path / "Sample.1.0.0.vsix"
    bad.write_bytes(corrupt_entry(build_vsix(), "extension.vsixmanifest"))
    store_dir = tmp_path / "gallery"
    with patch('main.logger') as mock_logger:
        code = main.main(["publish", str(bad), "--store_dir", str(store_dir), "--base_url", "https://example/"])
    assert code == 1
    mock_logger.error.assert_called_once()
    assert not (store_dir / "Sample.1.0.0.vsix").exists()


def test_publish_without_manifest_stores_nothing(tmp_path):
    package = tmp_path / "Broken.1.0.0.vsix"
    package.write_bytes(build_vsix(manifest=False))
    store_dir = tmp_path / "gallery"
    code = main.main(["publish", str(package), "--store_dir", str(store_dir), "--base_url", "https://example/"])
    assert code == 0
    assert not (store_dir / "Broken.1.0.0.vsix").exists()
    assert not (store_dir / "atom.xml").exists()


def test_publish_missing_file(tmp_path):
    code = main.main(["publish", str(tmp_path / "missing.vsix"), "--store_dir", str(tmp_path / "gallery"),
                      "--base_url", "https://example/"])
    assert code == 1


def test_list_entries(tmp_path, packages, capsys):
    store_dir = tmp_path / "gallery"
    main.main(["publish", str(packages[0]), str(packages[1]), "--store_dir", str(store_dir), "--base_url", "https://example/"])
    capsys.readouterr()

    code = main.main(["list", "--store_dir", str(store_dir)])

    assert code == 0
    lines = capsys.readouterr().out.splitlines()
    assert lines[0] == "Gallery (2 entries)"
    assert lines[1].split("\t")[0].strip() == "Other"
    assert lines[2].split("\t")[0].strip() == "Sample"
    assert lines[2].endswith("https://example/Sample.1.0.0.vsix")


def test_list_without_feed(tmp_path):
    assert main.main(["list", "--store_dir", str(tmp_path)]) == 1


def test_requires_command():
    with pytest.raises(SystemExit):
        main.main([])
