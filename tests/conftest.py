"""Shared fixtures: binary plist and bookmark byte builders."""

import plistlib
import struct

import pytest

from plugins.helpers.bookmark import BookmarkKey

DATA_OFFSET = 48


class BookmarkBuilder:
    """Writes bookmark records and TOCs the way macOS lays them out.

    Record offsets returned by the add methods are relative to the data
    section, the same numbers that go into TOC entries and arrays.
    """

    def __init__(self):
        self.body = bytearray(4)  # first TOC offset, filled in by build()
        self.tocs = []
        self.toc_offsets = []

    def record(self, data_type, payload):
        offset = len(self.body)
        self.body += struct.pack("<II", len(payload), data_type) + payload
        while len(self.body) % 4:
            self.body.append(0)
        return offset

    def string(self, text):
        return self.record(0x0101, text.encode("utf-8"))

    def utf16_string(self, text):
        return self.record(0x0102, text.encode("utf-16-le"))

    def data(self, blob):
        return self.record(0x0201, blob)

    def number(self, value):
        return self.record(0x0304, struct.pack("<q", value))

    def number32(self, value):
        return self.record(0x0303, struct.pack("<i", value))

    def double(self, value):
        return self.record(0x0306, struct.pack("<d", value))

    def date(self, seconds):
        return self.record(0x0400, struct.pack(">d", seconds))

    def boolean(self, value):
        return self.record(0x0501 if value else 0x0500, b"")

    def array(self, offsets):
        return self.record(0x0601, struct.pack("<{}I".format(len(offsets)), *offsets))

    def dictionary(self, pairs):
        flat = [o for pair in pairs for o in pair]
        return self.record(0x0701, struct.pack("<{}I".format(len(flat)), *flat))

    def uuid(self, raw):
        return self.record(0x0801, raw)

    def url(self, text):
        return self.record(0x0901, text.encode("utf-8"))

    def null(self):
        return self.record(0x0A01, b"")

    def string_array(self, items):
        return self.array([self.string(s) for s in items])

    def number_array(self, items):
        return self.array([self.number(n) for n in items])

    def toc(self, entries, toc_id=1):
        """entries is a list of (key, record offset)"""
        self.tocs.append((toc_id, list(entries)))

    def build(self, version=0x10040000):
        body = bytearray(self.body)
        self.toc_offsets = []
        pos = len(body)
        for _, entries in self.tocs:
            self.toc_offsets.append(pos)
            pos += 20 + 12 * len(entries)
        for index, (toc_id, entries) in enumerate(self.tocs):
            next_offset = self.toc_offsets[index + 1] if index + 1 < len(self.tocs) else 0
            body += struct.pack("<IIIII", 12 + 12 * len(entries), 0xFFFFFFFE, toc_id, next_offset, len(entries))
            for key, offset in entries:
                body += struct.pack("<III", key, offset, 0)
        struct.pack_into("<I", body, 0, self.toc_offsets[0] if self.toc_offsets else 0)
        header = struct.pack("<4sIII", b"book", DATA_OFFSET + len(body), version, DATA_OFFSET)
        return header + bytes(DATA_OFFSET - len(header)) + bytes(body)


def build_login_bookmark(path=("Users", "alice", "Applications", "Foo.app"), volume_uuid=bytes(16),
                         flags=(0x4002, 0xFFFFFFFF, 0), creation_seconds=None, extra=None):
    """Bookmark with the fields a backgrounditems.btm entry normally carries"""
    b = BookmarkBuilder()
    entries = [
        (BookmarkKey.Path, b.string_array(path)),
        (BookmarkKey.CNIDPath, b.number_array(range(100, 100 + len(path)))),
        (BookmarkKey.FileProperties, b.data(struct.pack("<3Q", *flags))),
        (BookmarkKey.FileID, b.number(100 + len(path) - 1)),
        (BookmarkKey.VolumePath, b.string("/")),
        (BookmarkKey.VolumeURL, b.url("file:///")),
        (BookmarkKey.VolumeName, b.string("Macintosh HD")),
        (BookmarkKey.VolumeUUID, b.uuid(volume_uuid)),
        (BookmarkKey.VolumeSize, b.number(500107862016)),
        (BookmarkKey.VolumeProperties, b.data(struct.pack("<3Q", 0x81, 0x13EF, 0))),
        (BookmarkKey.VolumeIsRoot, b.boolean(True)),
        (BookmarkKey.UserName, b.string("alice")),
        (BookmarkKey.UID, b.number32(501)),
        (BookmarkKey.ContainingFolder, b.number32(len(path) - 2)),
        (BookmarkKey.WasFileReference, b.boolean(True)),
        (BookmarkKey.CreationOptions, b.number32(512)),
    ]
    if creation_seconds is not None:
        entries.append((BookmarkKey.FileCreationDate, b.date(creation_seconds)))
        entries.append((BookmarkKey.VolumeCreationDate, b.date(creation_seconds)))
    for key, maker in (extra or {}).items():
        entries.append((key, maker(b)))
    b.toc(entries)
    return b.build()


def build_background_items(bookmarks):
    """backgrounditems.btm style NSKeyedArchiver plist holding the bookmarks"""
    objects = ["$null"]
    for blob in bookmarks:
        objects.append({"NS.data": blob})
    objects.append({"$classes": ["NSData", "NSObject"], "$classname": "NSData"})
    archive = {
        "$archiver": "NSKeyedArchiver",
        "$version": 100000,
        "$top": {"root": plistlib.UID(1)},
        "$objects": objects,
    }
    return plistlib.dumps(archive, fmt=plistlib.FMT_BINARY)


@pytest.fixture()
def bookmark_builder():
    return BookmarkBuilder()


@pytest.fixture()
def login_bookmark():
    return build_login_bookmark()


@pytest.fixture()
def background_items(login_bookmark):
    return build_background_items([login_bookmark])


@pytest.fixture()
def sample_plist():
    value = {
        "name": "Foo.app",
        "count": 42,
        "negative": -7,
        "ratio": 0.25,
        "enabled": True,
        "disabled": False,
        "blob": b"\x00\x01\x02book",
        "unicode": "Café ☃",
        "items": [1, "two", 3.5, [b"x"], {"k": "v"}],
    }
    return value, plistlib.dumps(value, fmt=plistlib.FMT_BINARY)
