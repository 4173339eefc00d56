'''
   Copyright (c) 2017 Yogesh Khatri

   This file is part of loginitems_apt (macOS LoginItems Artifact Parsing Tool).
   Usage or distribution of this software/code is subject to the
   terms of the MIT License.

   loginitem.py
   ------------
   Turns a decoded Bookmark into a flat LoginItem record.
   Nothing here raises for bad bookmark content, fields of the
   wrong type are treated as missing.
'''

import datetime
import logging
import struct
import uuid

from collections import namedtuple
from enum import IntFlag

from plugins.helpers.bookmark import BookmarkKey

log = logging.getLogger('MAIN.HELPERS.LOGINITEM')

PATH_SEPARATOR = '/' # separator of the system the artifact came from, not the one we run on

class TargetFlags(IntFlag):
    '''
    CFURL resource property bits as stored in the first u64 of
    FileProperties/VolumeProperties. Meanings are from observation of
    sample data across OS versions, not from Apple documentation.
    '''
    IsRegularFile           = 0x00000001
    IsDirectory             = 0x00000002
    IsSymbolicLink          = 0x00000004
    IsVolume                = 0x00000008
    IsPackage               = 0x00000010
    IsSystemImmutable       = 0x00000020
    IsUserImmutable         = 0x00000040
    IsHidden                = 0x00000080
    HasHiddenExtension      = 0x00000100
    IsApplication           = 0x00000200
    IsCompressed            = 0x00000400
    CanSetHiddenExtension   = 0x00000800
    IsReadable              = 0x00001000
    IsWriteable             = 0x00002000
    IsExecutable            = 0x00004000
    IsAliasFile             = 0x00008000
    IsMountTrigger          = 0x00010000

LOGINITEM_FIELDS = (
    'path_components',      # Path to binary to run, as list
    'target_path',          # Path components joined with PATH_SEPARATOR
    'cnid_path',            # Path represented as Catalog Node IDs
    'target_cnid',          # CNID of target
    'target_creation_time',
    'volume_path',
    'volume_url',
    'volume_name',
    'volume_uuid',          # 8-4-4-4-12 uppercase
    'volume_size',
    'volume_creation_time',
    'volume_flags',         # (flags, valid mask, reserved)
    'volume_root',          # Volume is filesystem root
    'localized_name',
    'security_extension_rw',
    'security_extension_ro',
    'target_flags',         # (flags, valid mask, reserved)
    'raw_flags',            # Low 32 bits of target flags
    'username',             # Username related to bookmark
    'uid',
    'folder_index',
    'creation_options',     # Bookmark creation options
    'file_ref_flag',
    'has_executable_flag',
    'is_bundled_app',       # From loginitems.<UID>.plist
    'app_id',
    'app_binary',
    'source_file'
)

LOGINITEM_DEFAULTS = {
    'path_components': (), 'target_path': '', 'cnid_path': (), 'volume_flags': (), 'volume_root': False,
    'target_flags': (), 'raw_flags': 0, 'file_ref_flag': False, 'has_executable_flag': False,
    'is_bundled_app': False, 'app_id': '', 'app_binary': '', 'source_file': ''
}

_LoginItemBase = namedtuple('LoginItem', LOGINITEM_FIELDS,
                            defaults=[LOGINITEM_DEFAULTS.get(f, None) for f in LOGINITEM_FIELDS])

class LoginItem(_LoginItemBase):
    __slots__ = ()

    @property
    def full_path(self):
        '''Absolute path of target, prefixed with volume path if target is not on root volume'''
        if not self.target_path:
            return ''
        file_path = PATH_SEPARATOR + self.target_path
        if self.volume_path and self.volume_path != PATH_SEPARATOR and not file_path.startswith(self.volume_path):
            file_path = self.volume_path.rstrip(PATH_SEPARATOR) + file_path
        return file_path

    @property
    def name(self):
        '''Localized name, else last path component'''
        if self.localized_name:
            return self.localized_name
        if self.path_components:
            return self.path_components[-1]
        return self.app_binary

def FormatUuid(value):
    '''Returns 8-4-4-4-12 uppercase string for 16 raw bytes or an existing uuid string, else None'''
    if isinstance(value, bytes) and len(value) == 16:
        return str(uuid.UUID(bytes=value)).upper()
    elif isinstance(value, str) and value:
        return value.strip().upper()
    return None

def SplitPropertyFlags(value):
    '''Property flag blobs hold up to 3 little endian u64 values'''
    if isinstance(value, bool):
        return ()
    if isinstance(value, int):
        return (value,)
    if isinstance(value, bytes):
        count = min(len(value) // 8, 3)
        return struct.unpack('<{}Q'.format(count), value[:count * 8])
    return ()

def ReadSandboxExtension(value):
    if isinstance(value, bytes):
        value = value.decode('utf-8', 'backslashreplace')
    if isinstance(value, str):
        return value.rstrip('\x00')
    return None

def _Typed(bookmark, key, types, default=None):
    value = bookmark.get(key, None)
    if value is None:
        return default
    if isinstance(value, bool) and bool not in types:
        return default
    if isinstance(value, types):
        return value
    log.debug('Ignoring value of type {} for bookmark key {}, expected {}'.format(type(value).__name__,
                key.name if isinstance(key, BookmarkKey) else key, ' or '.join(t.__name__ for t in types)))
    return default

def assemble_login_item(bookmark, source_file, is_bundled_app):
    '''
    Projects a Bookmark (or any mapping of BookmarkKey -> value) into a LoginItem.
    Missing or mistyped fields become None (or empty). Never raises for bookmark content.
    '''
    components = _Typed(bookmark, BookmarkKey.Path, (list, tuple), [])
    path_components = tuple(c for c in components if isinstance(c, str))
    if len(path_components) != len(components):
        log.debug('Dropped {} non-string path component(s)'.format(len(components) - len(path_components)))

    cnids = _Typed(bookmark, BookmarkKey.CNIDPath, (list, tuple), [])
    cnid_path = tuple(c for c in cnids if isinstance(c, int) and not isinstance(c, bool))

    target_flags = SplitPropertyFlags(bookmark.get(BookmarkKey.FileProperties, None))
    raw_flags = (target_flags[0] & 0xFFFFFFFF) if target_flags else 0
    has_executable_flag = False
    if target_flags:
        valid_mask = target_flags[1] if len(target_flags) > 1 else TargetFlags.IsExecutable
        has_executable_flag = bool(target_flags[0] & valid_mask & TargetFlags.IsExecutable)

    return LoginItem(
        path_components=path_components,
        target_path=PATH_SEPARATOR.join(path_components),
        cnid_path=cnid_path,
        target_cnid=_Typed(bookmark, BookmarkKey.FileID, (int,)),
        target_creation_time=_Typed(bookmark, BookmarkKey.FileCreationDate, (datetime.datetime,)),
        volume_path=_Typed(bookmark, BookmarkKey.VolumePath, (str,)),
        volume_url=_Typed(bookmark, BookmarkKey.VolumeURL, (str,)),
        volume_name=_Typed(bookmark, BookmarkKey.VolumeName, (str,)),
        volume_uuid=FormatUuid(bookmark.get(BookmarkKey.VolumeUUID, None)),
        volume_size=_Typed(bookmark, BookmarkKey.VolumeSize, (int,)),
        volume_creation_time=_Typed(bookmark, BookmarkKey.VolumeCreationDate, (datetime.datetime,)),
        volume_flags=SplitPropertyFlags(bookmark.get(BookmarkKey.VolumeProperties, None)),
        volume_root=_Typed(bookmark, BookmarkKey.VolumeIsRoot, (bool,), False),
        localized_name=_Typed(bookmark, BookmarkKey.DisplayName, (str,)),
        security_extension_rw=ReadSandboxExtension(bookmark.get(BookmarkKey.SandboxRwExtension, None)),
        security_extension_ro=ReadSandboxExtension(bookmark.get(BookmarkKey.SandboxRoExtension, None)),
        target_flags=target_flags,
        raw_flags=raw_flags,
        username=_Typed(bookmark, BookmarkKey.UserName, (str,)),
        uid=_Typed(bookmark, BookmarkKey.UID, (int,)),
        folder_index=_Typed(bookmark, BookmarkKey.ContainingFolder, (int,)),
        creation_options=_Typed(bookmark, BookmarkKey.CreationOptions, (int,)),
        file_ref_flag=_Typed(bookmark, BookmarkKey.WasFileReference, (bool,), False),
        has_executable_flag=has_executable_flag,
        is_bundled_app=bool(is_bundled_app),
        source_file=str(source_file) if source_file is not None else ''
    )

def make_bundled_login_item(app_binary, app_id, source_file):
    '''Record for a loginitems.<UID>.plist entry that only names the helper binary and its app'''
    return LoginItem(is_bundled_app=True, app_id=app_id, app_binary=app_binary,
                     source_file=str(source_file) if source_file is not None else '')
