import datetime
import struct

import pytest

from plugins.helpers.bookmark import BookmarkKey, decode_bookmark
from plugins.helpers.bplist import decode_container, get_blob
from plugins.helpers.loginitem import (LoginItem, TargetFlags, FormatUuid, SplitPropertyFlags,
                                       assemble_login_item, make_bundled_login_item)

from tests.conftest import build_background_items, build_login_bookmark


def test_end_to_end_from_container(background_items):
    container = decode_container(background_items)
    blob = get_blob(container, ["$objects", 1, "NS.data"])
    item = assemble_login_item(decode_bookmark(blob), "/tmp/backgrounditems.btm", False)

    assert item.target_path == "Users/alice/Applications/Foo.app"
    assert item.path_components == ("Users", "alice", "Applications", "Foo.app")
    assert item.volume_uuid == "00000000-0000-0000-0000-000000000000"
    assert item.target_creation_time is None
    assert item.volume_creation_time is None
    assert item.volume_name == "Macintosh HD"
    assert item.localized_name is None
    assert item.is_bundled_app is False
    assert item.source_file == "/tmp/backgrounditems.btm"


def test_all_fields(login_bookmark):
    item = assemble_login_item(decode_bookmark(login_bookmark), "src", True)
    assert item.cnid_path == (100, 101, 102, 103)
    assert item.target_cnid == 103
    assert item.volume_path == "/"
    assert item.volume_url == "file:///"
    assert item.volume_size == 500107862016
    assert item.volume_flags == (0x81, 0x13EF, 0)
    assert item.volume_root is True
    assert item.username == "alice"
    assert item.uid == 501
    assert item.folder_index == 2
    assert item.creation_options == 512
    assert item.file_ref_flag is True
    assert item.is_bundled_app is True
    assert item.full_path == "/Users/alice/Applications/Foo.app"
    assert item.name == "Foo.app"


def test_flags():
    item = assemble_login_item(decode_bookmark(build_login_bookmark()), "src", False)
    assert item.target_flags == (0x4002, 0xFFFFFFFF, 0)
    assert item.raw_flags == 0x4002
    assert item.has_executable_flag is True
    assert TargetFlags.IsDirectory in TargetFlags(item.raw_flags)


def test_flags_masked_out():
    item = assemble_login_item(decode_bookmark(build_login_bookmark(flags=(0x4002, 0x2, 0))), "src", False)
    assert item.raw_flags == 0x4002
    assert item.has_executable_flag is False


def test_raw_flags_low_32_bits():
    item = assemble_login_item(decode_bookmark(build_login_bookmark(flags=(0x100000002, 0xF, 0))), "src", False)
    assert item.raw_flags == 2
    assert item.target_flags[0] == 0x100000002


def test_dates():
    seconds = 631152000.5
    item = assemble_login_item(decode_bookmark(build_login_bookmark(creation_seconds=seconds)), "src", False)
    expected = datetime.datetime(2001, 1, 1) + datetime.timedelta(seconds=seconds)
    assert item.target_creation_time == expected
    assert item.volume_creation_time == expected


def test_localized_name_and_sandbox():
    extra = {
        BookmarkKey.DisplayName: lambda b: b.string("Foo"),
        BookmarkKey.SandboxRwExtension: lambda b: b.data(b"1234;00;rw;/Users/alice\x00"),
    }
    item = assemble_login_item(decode_bookmark(build_login_bookmark(extra=extra)), "src", False)
    assert item.localized_name == "Foo"
    assert item.name == "Foo"
    assert item.security_extension_rw == "1234;00;rw;/Users/alice"
    assert item.security_extension_ro is None


def test_empty_record():
    item = assemble_login_item({}, None, False)
    assert item.target_path == ""
    assert item.path_components == ()
    assert item.volume_uuid is None
    assert item.target_flags == ()
    assert item.raw_flags == 0
    assert item.has_executable_flag is False
    assert item.source_file == ""
    assert item.full_path == ""


def test_wrong_types_become_missing():
    record = {
        BookmarkKey.Path: ["Users", 5, "bob"],
        BookmarkKey.VolumeName: 12,
        BookmarkKey.FileCreationDate: "yesterday",
        BookmarkKey.UID: True,
        BookmarkKey.VolumeUUID: b"short",
    }
    item = assemble_login_item(record, "src", False)
    assert item.target_path == "Users/bob"
    assert item.volume_name is None
    assert item.target_creation_time is None
    assert item.uid is None
    assert item.volume_uuid is None


def test_item_is_immutable(login_bookmark):
    item = assemble_login_item(decode_bookmark(login_bookmark), "src", False)
    with pytest.raises(AttributeError):
        item.volume_name = "Other"
    assert isinstance(item, tuple)


def test_full_path_on_other_volume():
    item = LoginItem(path_components=("Apps", "Bar.app"), target_path="Apps/Bar.app", volume_path="/Volumes/Ext")
    assert item.full_path == "/Volumes/Ext/Apps/Bar.app"


@pytest.mark.parametrize("value, expected", [
    (bytes(16), "00000000-0000-0000-0000-000000000000"),
    (bytes(range(16)), "00010203-0405-0607-0809-0A0B0C0D0E0F"),
    ("0a81f3b1-51d9-3335-b3e3-169c3640360d", "0A81F3B1-51D9-3335-B3E3-169C3640360D"),
    (b"\x00" * 15, None),
    (None, None),
    ("", None),
])
def test_format_uuid(value, expected):
    assert FormatUuid(value) == expected


def test_split_property_flags():
    assert SplitPropertyFlags(struct.pack("<3Q", 2, 15, 0)) == (2, 15, 0)
    assert SplitPropertyFlags(struct.pack("<3Q", 4294967425, 4294972399, 0)) == (4294967425, 4294972399, 0)
    assert SplitPropertyFlags(struct.pack("<Q", 7) + b"\x01") == (7,)
    assert SplitPropertyFlags(9) == (9,)
    assert SplitPropertyFlags(True) == ()
    assert SplitPropertyFlags(None) == ()


def test_bundled_item():
    item = make_bundled_login_item("com.example.helper", "com.example.app", "/var/db/loginitems.501.plist")
    assert item.is_bundled_app is True
    assert item.app_id == "com.example.app"
    assert item.app_binary == "com.example.helper"
    assert item.name == "com.example.helper"
    assert item.target_path == ""
    assert item.volume_uuid is None


def test_multiple_bookmarks_in_container():
    data = build_background_items([build_login_bookmark(path=("Applications", "A.app")),
                                   build_login_bookmark(path=("Applications", "B.app"))])
    container = decode_container(data)
    names = [assemble_login_item(decode_bookmark(get_blob(container, ["$objects", i, "NS.data"])), "s", False).name
             for i in (1, 2)]
    assert names == ["A.app", "B.app"]
