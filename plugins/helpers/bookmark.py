'''
   Copyright (c) 2017 Yogesh Khatri

   This file is part of loginitems_apt (macOS LoginItems Artifact Parsing Tool).
   Usage or distribution of this software/code is subject to the
   terms of the MIT License.

   bookmark.py
   -----------
   Reader for Apple Bookmark data (the 'book' format that replaced Alias
   records). Used by LoginItems, Finder recents, quarantine and others.

   References:
     http://michaellynn.github.io/2015/10/24/apples-bookmarkdata-exposed/
     https://github.com/al45tair/mac_alias (bookmark.py)

   Layout:
     Header      'book', u32 total length, u32 version, u32 data offset
     Data        u32 offset of first TOC, followed by records and TOCs
     TOC         u32 size, u32 magic (0xFFFFFFFE), u32 id, u32 next TOC, u32 count
                 count * (u32 key, u32 record offset, u32 reserved)
     Record      u32 length, u32 type, payload
   All offsets after the header are relative to the data offset.
'''

import logging
import struct

from collections.abc import Mapping
from enum import IntEnum
from urllib.parse import urljoin

from construct import Struct, Bytes, Int32ul, ConstructError

from plugins.helpers.common import CommonFunctions
from plugins.helpers.decode_errors import *

log = logging.getLogger('MAIN.HELPERS.BOOKMARK')

BOOKMARK_MAGIC = b'book'
BOOKMARK_HEADER_SIZE = 16         # magic, length, version, data offset
BOOKMARK_DATA_OFFSET_DEFAULT = 48 # seen in every sample so far, not enforced
TOC_MAGIC = 0xFFFFFFFE
TOC_HEADER_SIZE = 20
TOC_ENTRY_SIZE = 12
RECORD_HEADER_SIZE = 8
MAX_TOC_PAGES = 64
MAX_RECURSION_DEPTH = 256
MAX_SHARED_ITEMS = 1000000 # elements copied for repeated references to arrays/dicts

BookmarkHeader = "BookmarkHeader" / Struct(
    "magic" / Bytes(4),
    "length" / Int32ul,
    "version" / Int32ul,
    "data_offset" / Int32ul
)

TocHeader = "TocHeader" / Struct(
    "size" / Int32ul,
    "magic" / Int32ul,
    "identifier" / Int32ul,
    "next_toc_offset" / Int32ul,
    "count" / Int32ul
)

TocEntry = "TocEntry" / Struct(
    "key" / Int32ul,
    "offset" / Int32ul,
    "reserved" / Int32ul
)

class BookmarkDataType(IntEnum):
    '''High 24 bits of record type'''
    String  = 0x0100
    Data    = 0x0200
    Number  = 0x0300
    Date    = 0x0400
    Boolean = 0x0500
    Array   = 0x0600
    Dict    = 0x0700
    UUID    = 0x0800
    URL     = 0x0900
    Null    = 0x0A00

BMK_DATA_TYPE_MASK = 0xFFFFFF00
BMK_DATA_SUBTYPE_MASK = 0x000000FF

BMK_STRING_ST_UTF8 = 0x01
BMK_STRING_ST_UTF16 = 0x02
BMK_URL_ST_ABSOLUTE = 0x01
BMK_URL_ST_RELATIVE = 0x02

# CFNumberType values that hold floating point
CF_FLOAT_NUMBER_TYPES = (5, 6, 12, 13, 16) # Float32, Float64, Float, Double, CGFloat

class BookmarkKey(IntEnum):
    Path                = 0x1004 # Array of path components
    CNIDPath            = 0x1005 # Array of CNIDs (inode numbers)
    FileProperties      = 0x1010 # Resource property flags (3 x u64)
    FileName            = 0x1020
    FileID              = 0x1030 # CNID of target
    FileCreationDate    = 0x1040
    VolumePath          = 0x2002
    VolumeURL           = 0x2005
    VolumeName          = 0x2010
    VolumeUUID          = 0x2011
    VolumeSize          = 0x2012
    VolumeCreationDate  = 0x2013
    VolumeProperties    = 0x2020 # Volume property flags (3 x u64)
    VolumeIsRoot        = 0x2030
    VolumeBookmark      = 0x2040 # TOC id of bookmark for originating volume (eg: dmg)
    VolumeMountPoint    = 0x2050
    ContainingFolder    = 0xC001 # Index of containing folder in Path
    UserName            = 0xC011
    UID                 = 0xC012
    WasFileReference    = 0xD001
    CreationOptions     = 0xD010
    URLLengths          = 0xE003
    DisplayName         = 0xF017 # Localized name
    IconData            = 0xF020
    IconRef             = 0xF021
    TypeBindingData     = 0xF022
    CreationTime        = 0xF030
    SandboxRwExtension  = 0xF080
    SandboxRoExtension  = 0xF081
    AliasData           = 0xFE00

def GetKeyName(key):
    if isinstance(key, BookmarkKey):
        return key.name
    elif isinstance(key, int):
        return '0x{:04X}'.format(key)
    return repr(key)

class Bookmark(Mapping):
    '''
    Decoded bookmark. Mapping access (bm[BookmarkKey.Path], bm.get(..)) reads
    the first TOC which describes the target. All TOCs are in .tocs as a list
    of (toc_id, dict) tuples, problems with single fields are in .warnings
    '''

    def __init__(self, tocs=None, warnings=None):
        self.tocs = tocs if tocs is not None else []
        self.warnings = warnings if warnings is not None else []

    @classmethod
    def from_bytes(cls, data, max_depth=MAX_RECURSION_DEPTH, max_toc_pages=MAX_TOC_PAGES):
        return decode_bookmark(data, max_depth, max_toc_pages)

    def _primary(self):
        return self.tocs[0][1] if self.tocs else {}

    def __getitem__(self, key):
        return self._primary()[key]

    def __iter__(self):
        return iter(self._primary())

    def __len__(self):
        return len(self._primary())

    def GetToc(self, toc_id):
        '''Returns dictionary for TOC with given id, or None'''
        for tid, toc in self.tocs:
            if tid == toc_id:
                return toc
        return None

    def __repr__(self):
        s = ['Bookmark(']
        for tid, toc in self.tocs:
            s.append('  TOC {}'.format(tid))
            for k, v in toc.items():
                s.append('    {} = {!r}'.format(GetKeyName(k), v))
        if self.warnings:
            s.append('  {} warning(s)'.format(len(self.warnings)))
        s.append(')')
        return '\n'.join(s)

class BookmarkReader:
    '''Decodes one bookmark buffer. Use decode_bookmark() rather than this directly.'''

    def __init__(self, data, max_depth=MAX_RECURSION_DEPTH, max_toc_pages=MAX_TOC_PAGES, max_shared_items=MAX_SHARED_ITEMS):
        self.data = bytes(data)
        self.max_depth = max_depth
        self.max_shared_items = max_shared_items
        self.shared_items = 0
        self.max_toc_pages = max_toc_pages
        self.length = 0
        self.data_offset = 0
        self.cache = {}   # record offset -> value
        self.failed = {}  # record offset -> FieldDecodeError
        self.in_progress = set()
        self.warnings = []

    def Parse(self):
        self.ReadHeader()
        tocs = self.ReadTocs()
        return Bookmark(tocs, self.warnings)

    def ReadHeader(self):
        magic = self.data[0:4]
        if magic != BOOKMARK_MAGIC:
            raise InvalidBookmarkMagic('Not bookmark data', 0, BOOKMARK_MAGIC, magic)
        if len(self.data) < BOOKMARK_HEADER_SIZE:
            raise MalformedBookmark('Truncated bookmark header', 0, BOOKMARK_HEADER_SIZE, len(self.data))
        try:
            header = BookmarkHeader.parse(self.data)
        except ConstructError as ex:
            raise MalformedBookmark('Could not read bookmark header: ' + str(ex), 0)

        if header.length > len(self.data):
            raise MalformedBookmark('Bookmark length exceeds data', 4, header.length, len(self.data))
        if header.data_offset < BOOKMARK_HEADER_SIZE or header.data_offset + 4 > header.length:
            raise MalformedBookmark('Bad data offset in header', 12,
                                    'offset in [{}, {}]'.format(BOOKMARK_HEADER_SIZE, header.length - 4),
                                    header.data_offset)
        if header.data_offset != BOOKMARK_DATA_OFFSET_DEFAULT:
            log.debug('Unusual bookmark data offset 0x{:X}'.format(header.data_offset))
        self.length = header.length
        self.data = self.data[:header.length]
        self.data_offset = header.data_offset

    def ReadU32(self, pos):
        return struct.unpack_from('<I', self.data, pos)[0]

    def ReadTocs(self):
        tocs = []
        visited = set()
        toc_offset = self.ReadU32(self.data_offset)
        if toc_offset == 0:
            raise MalformedBookmark('Bookmark has no table of contents', self.data_offset)
        while toc_offset:
            if toc_offset in visited:
                raise TocChainLimitExceeded('TOC chain loops back', self.data_offset + toc_offset,
                                            'new TOC offset', toc_offset)
            if len(visited) >= self.max_toc_pages:
                raise TocChainLimitExceeded('Too many TOC pages', self.data_offset + toc_offset,
                                            self.max_toc_pages, len(visited) + 1)
            visited.add(toc_offset)
            toc_id, toc, toc_offset = self.ReadToc(toc_offset)
            tocs.append((toc_id, toc))
        return tocs

    def ReadToc(self, toc_offset):
        '''Returns (toc_id, dictionary, next_toc_offset)'''
        pos = self.data_offset + toc_offset
        if pos + TOC_HEADER_SIZE > self.length:
            raise MalformedBookmark('TOC header outside bookmark', pos, TOC_HEADER_SIZE, max(self.length - pos, 0))
        try:
            toc_header = TocHeader.parse(self.data[pos:pos + TOC_HEADER_SIZE])
        except ConstructError as ex:
            raise MalformedBookmark('Could not read TOC header: ' + str(ex), pos)
        if toc_header.magic != TOC_MAGIC:
            raise MalformedBookmark('Bad TOC magic', pos + 4, hex(TOC_MAGIC), hex(toc_header.magic))
        entries_pos = pos + TOC_HEADER_SIZE
        if entries_pos + toc_header.count * TOC_ENTRY_SIZE > self.length:
            raise MalformedBookmark('TOC entries run past end of bookmark', entries_pos,
                                    toc_header.count * TOC_ENTRY_SIZE, max(self.length - entries_pos, 0))
        toc_id = toc_header.identifier
        toc = {}
        for index in range(toc_header.count):
            entry_pos = entries_pos + index * TOC_ENTRY_SIZE
            entry = TocEntry.parse(self.data[entry_pos:entry_pos + TOC_ENTRY_SIZE])
            key = entry.key
            try:
                if key & 0x80000000: # key is a string record
                    key = self.ReadItem(key & 0x7FFFFFFF, 0)
                    if not isinstance(key, str):
                        raise FieldDecodeError('String key record is not a string', self.data_offset + (entry.key & 0x7FFFFFFF),
                                               'str', type(key).__name__)
                else:
                    key = ToBookmarkKey(key)
                toc[key] = self.ReadItem(entry.offset, 0)
            except FieldDecodeError as ex:
                warning = FieldDecodeWarning(toc_id, key, self.data_offset + entry.offset, ex.__str__())
                log.warning('Bookmark field {} in TOC {} skipped, {}'.format(GetKeyName(key), toc_id, ex))
                self.warnings.append(warning)
        return toc_id, toc, toc_header.next_toc_offset

    def ReadItem(self, offset, depth):
        '''Reads the record at offset (relative to data offset), nested records are read recursively'''
        if offset in self.cache:
            return self.CopyShared(self.cache[offset], offset)
        if offset in self.failed:
            raise self.failed[offset]
        if offset in self.in_progress:
            raise RecursionLimitExceeded('Cyclic record reference', self.data_offset + offset, 'acyclic', offset)
        if depth > self.max_depth:
            raise RecursionLimitExceeded('Record nesting too deep', self.data_offset + offset, self.max_depth, depth)

        self.in_progress.add(offset)
        try:
            pos = self.data_offset + offset
            if pos + RECORD_HEADER_SIZE > self.length:
                raise FieldDecodeError('Record header outside bookmark', pos, RECORD_HEADER_SIZE, max(self.length - pos, 0))
            length, data_type = struct.unpack_from('<II', self.data, pos)
            data_pos = pos + RECORD_HEADER_SIZE
            if data_pos + length > self.length:
                raise FieldDecodeError('Record data runs past end of bookmark', pos, length, self.length - data_pos)
            value = self.DecodeItem(data_type, self.data[data_pos:data_pos + length], pos, depth)
        except FieldDecodeError as ex:
            self.failed[offset] = ex
            raise
        finally:
            self.in_progress.discard(offset)
        self.cache[offset] = value
        return value

    def CopyShared(self, value, offset):
        '''Records referenced more than once get a fresh copy of any array/dict'''
        if isinstance(value, list):
            self.CountShared(len(value), offset)
            items = []
            for item in value:
                items.append(self.CopyShared(item, offset))
            return items
        elif isinstance(value, dict):
            self.CountShared(len(value), offset)
            copied = {}
            for k, v in value.items():
                copied[k] = self.CopyShared(v, offset)
            return copied
        return value

    def CountShared(self, count, offset):
        self.shared_items += count
        if self.shared_items > self.max_shared_items:
            raise RecursionLimitExceeded('Repeated record references expand to too many values', self.data_offset + offset,
                                         self.max_shared_items, self.shared_items)

    def DecodeItem(self, data_type, payload, pos, depth):
        kind = data_type & BMK_DATA_TYPE_MASK
        subtype = data_type & BMK_DATA_SUBTYPE_MASK
        length = len(payload)

        if kind == BookmarkDataType.String:
            if subtype == BMK_STRING_ST_UTF8:
                encoding = 'utf-8'
            elif subtype == BMK_STRING_ST_UTF16:
                encoding = 'utf-16-le'
            else:
                raise FieldDecodeError('Unknown string subtype', pos, (1, 2), subtype)
            try:
                return payload.decode(encoding)
            except UnicodeDecodeError as ex:
                raise FieldDecodeError('Bad string data: ' + str(ex), pos)

        elif kind == BookmarkDataType.Data:
            return payload

        elif kind == BookmarkDataType.Number:
            if subtype in CF_FLOAT_NUMBER_TYPES:
                if length == 4:
                    return struct.unpack('<f', payload)[0]
                elif length == 8:
                    return struct.unpack('<d', payload)[0]
                raise FieldDecodeError('Bad float size', pos, (4, 8), length)
            if length not in (1, 2, 4, 8):
                raise FieldDecodeError('Bad integer size', pos, (1, 2, 4, 8), length)
            return int.from_bytes(payload, 'little', signed=True)

        elif kind == BookmarkDataType.Date:
            if length != 8:
                raise FieldDecodeError('Bad date size', pos, 8, length)
            seconds = struct.unpack('>d', payload)[0]
            try:
                return CommonFunctions.ReadMacAbsoluteTime(seconds)
            except (OverflowError, ValueError):
                raise FieldDecodeError('Date out of range', pos, 'seconds since 2001', seconds)

        elif kind == BookmarkDataType.Boolean:
            if length != 0:
                log.debug('Boolean record at 0x{:X} has {} bytes of payload'.format(pos, length))
            return subtype == 1

        elif kind == BookmarkDataType.Array:
            if length % 4:
                raise FieldDecodeError('Array size not a multiple of 4', pos, '4*n', length)
            offsets = struct.unpack('<{}I'.format(length // 4), payload)
            items = []
            for o in offsets:
                items.append(self.ReadItem(o, depth + 1))
            return items

        elif kind == BookmarkDataType.Dict:
            if length % 8:
                raise FieldDecodeError('Dictionary size not a multiple of 8', pos, '8*n', length)
            offsets = struct.unpack('<{}I'.format(length // 4), payload)
            result = {}
            for i in range(0, len(offsets), 2):
                key = self.ReadItem(offsets[i], depth + 1)
                try:
                    hash(key)
                except TypeError:
                    raise FieldDecodeError('Dictionary key is not a scalar', pos, 'hashable key', type(key).__name__)
                result[key] = self.ReadItem(offsets[i + 1], depth + 1)
            return result

        elif kind == BookmarkDataType.UUID:
            if length != 16:
                raise FieldDecodeError('Bad UUID size', pos, 16, length)
            return payload

        elif kind == BookmarkDataType.URL:
            if subtype == BMK_URL_ST_ABSOLUTE:
                try:
                    return payload.decode('utf-8')
                except UnicodeDecodeError as ex:
                    raise FieldDecodeError('Bad URL data: ' + str(ex), pos)
            elif subtype == BMK_URL_ST_RELATIVE:
                if length != 8:
                    raise FieldDecodeError('Bad relative URL size', pos, 8, length)
                base_offset, rel_offset = struct.unpack('<II', payload)
                base = self.ReadItem(base_offset, depth + 1)
                rel = self.ReadItem(rel_offset, depth + 1)
                if not (isinstance(base, str) and isinstance(rel, str)):
                    raise FieldDecodeError('Relative URL parts are not strings', pos)
                try:
                    return urljoin(base, rel)
                except ValueError as ex:
                    raise FieldDecodeError('Bad relative URL: ' + str(ex), pos)
            raise FieldDecodeError('Unknown URL subtype', pos, (1, 2), subtype)

        elif kind == BookmarkDataType.Null:
            return None

        raise FieldDecodeError('Unknown record type', pos, None, '0x{:04X}'.format(data_type))

def ToBookmarkKey(key):
    '''Returns BookmarkKey member if key is known, else the int as is'''
    try:
        return BookmarkKey(key)
    except ValueError:
        return key

def decode_bookmark(data, max_depth=MAX_RECURSION_DEPTH, max_toc_pages=MAX_TOC_PAGES, max_shared_items=MAX_SHARED_ITEMS):
    '''
    Decodes bookmark bytes and returns a Bookmark object.
    Raises InvalidBookmarkMagic, MalformedBookmark (or TocChainLimitExceeded) and
    RecursionLimitExceeded for structural problems. A field that cannot be read is
    left out and a FieldDecodeWarning is added to Bookmark.warnings instead.
    '''
    if not isinstance(data, (bytes, bytearray, memoryview)):
        raise TypeError('decode_bookmark() needs bytes, got ' + type(data).__name__)
    try:
        return BookmarkReader(data, max_depth, max_toc_pages, max_shared_items).Parse()
    except RecursionError:
        raise RecursionLimitExceeded('Record nesting exceeds interpreter stack', None, max_depth, None)
