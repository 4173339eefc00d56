'''
   Copyright (c) 2017 Yogesh Khatri

   This file is part of loginitems_apt (macOS LoginItems Artifact Parsing Tool).
   Usage or distribution of this software/code is subject to the
   terms of the MIT License.

   bplist.py
   ---------
   Reads Apple binary plist (bplist00) data into native python objects.
   Object layout follows the CCL Forensics ccl_bplist reader, with every
   offset and reference checked against the buffer before it is used,
   so a corrupt or hostile file raises a DecodeError and nothing else.

   Type marker (high nibble of first byte of each object):
     0000 null/false/true/fill   0001 int       0010 real
     0011 date                   0100 data      0101 ascii string
     0110 utf-16 string          1000 uid       1010 array
     1100 set                    1101 dict
'''

import datetime
import logging
import struct

from construct import Struct, Padding, Int8ub, Int64ub, ConstructError

from plugins.helpers.common import CommonFunctions
from plugins.helpers.decode_errors import *

log = logging.getLogger('MAIN.HELPERS.BPLIST')

BPLIST_MAGIC = b'bplist00'
HEADER_SIZE = len(BPLIST_MAGIC)
TRAILER_SIZE = 32
MAX_RECURSION_DEPTH = 256
MAX_SHARED_ITEMS = 1000000 # elements copied for repeated references to arrays/dicts
VALID_INT_SIZES = (1, 2, 4, 8)

BplistTrailer = "BplistTrailer" / Struct(
    Padding(5),
    "sort_version" / Int8ub,
    "offset_int_size" / Int8ub,
    "object_ref_size" / Int8ub,
    "object_count" / Int64ub,
    "top_object" / Int64ub,
    "offset_table_offset" / Int64ub
)

class BplistReader:
    '''Decodes one bplist buffer. Use decode_container() rather than this directly.'''

    def __init__(self, data, max_depth=MAX_RECURSION_DEPTH, max_shared_items=MAX_SHARED_ITEMS):
        self.data = bytes(data)
        self.max_depth = max_depth
        self.max_shared_items = max_shared_items
        self.shared_items = 0
        self.offset_int_size = 0
        self.object_ref_size = 0
        self.object_count = 0
        self.top_object = 0
        self.offset_table_offset = 0
        self.offset_table = []
        self.objects_end = 0
        self.cache = {}         # object index -> decoded value
        self.in_progress = set()

    def Parse(self):
        self.ReadHeader()
        self.ReadTrailer()
        self.ReadOffsetTable()
        return self.DecodeObject(self.top_object, 0)

    def ReadHeader(self):
        magic = self.data[0:HEADER_SIZE]
        if magic != BPLIST_MAGIC:
            raise InvalidMagic('Not a binary plist', 0, BPLIST_MAGIC, magic)

    def ReadTrailer(self):
        data_len = len(self.data)
        if data_len < HEADER_SIZE + TRAILER_SIZE:
            raise InvalidTrailer('Data too small to hold trailer', 0, HEADER_SIZE + TRAILER_SIZE, data_len)
        trailer_pos = data_len - TRAILER_SIZE
        try:
            trailer = BplistTrailer.parse(self.data[trailer_pos:])
        except ConstructError as ex:
            raise InvalidTrailer('Could not read trailer: ' + str(ex), trailer_pos)

        if trailer.offset_int_size not in VALID_INT_SIZES:
            raise InvalidTrailer('Bad offset table entry size', trailer_pos + 6, VALID_INT_SIZES, trailer.offset_int_size)
        if trailer.object_ref_size not in VALID_INT_SIZES:
            raise InvalidTrailer('Bad object reference size', trailer_pos + 7, VALID_INT_SIZES, trailer.object_ref_size)
        if trailer.object_count == 0:
            raise InvalidTrailer('No objects in plist', trailer_pos + 8, '>0', 0)
        if trailer.top_object >= trailer.object_count:
            raise InvalidTrailer('Top object index outside object table', trailer_pos + 16,
                                 '<{}'.format(trailer.object_count), trailer.top_object)
        table_end = trailer.offset_table_offset + trailer.object_count * trailer.offset_int_size
        if trailer.offset_table_offset < HEADER_SIZE or table_end > trailer_pos:
            raise InvalidTrailer('Offset table does not fit in data', trailer_pos + 24,
                                 'table inside [{}, {})'.format(HEADER_SIZE, trailer_pos),
                                 (trailer.offset_table_offset, table_end))

        self.offset_int_size = trailer.offset_int_size
        self.object_ref_size = trailer.object_ref_size
        self.object_count = trailer.object_count
        self.top_object = trailer.top_object
        self.offset_table_offset = trailer.offset_table_offset
        self.objects_end = trailer.offset_table_offset
        log.debug('bplist trailer: objects={} top={} offset_table=0x{:X} offset_size={} ref_size={}'.format(
                    self.object_count, self.top_object, self.offset_table_offset,
                    self.offset_int_size, self.object_ref_size))

    def ReadOffsetTable(self):
        size = self.offset_int_size
        pos = self.offset_table_offset
        for index in range(self.object_count):
            offset = int.from_bytes(self.data[pos:pos + size], 'big')
            if offset < HEADER_SIZE or offset >= self.objects_end:
                raise InvalidTrailer('Offset table entry {} points outside object area'.format(index), pos,
                                     'offset in [{}, {})'.format(HEADER_SIZE, self.objects_end), offset)
            self.offset_table.append(offset)
            pos += size

    def Read(self, offset, length, what='object'):
        '''Returns bytes from object area, raises InvalidObject if not all of it is there'''
        end = offset + length
        if length < 0 or end > self.objects_end:
            raise InvalidObject('{} data runs past end of object area'.format(what.capitalize()), offset,
                                length, max(self.objects_end - offset, 0))
        return self.data[offset:end]

    def ReadByte(self, offset):
        return self.Read(offset, 1, 'marker')[0]

    def DecodeMultibyteInt(self, b, signed):
        length = len(b)
        if length == 16:
            high, low = struct.unpack('>qQ', b)
            return (high << 64) | low
        return int.from_bytes(b, 'big', signed=signed)

    def ReadCount(self, type_byte, pos):
        '''Returns (count, position after count) for data/string/collection objects'''
        count = type_byte & 0x0F
        if count != 0x0F:
            return count, pos + 1
        int_type_byte = self.ReadByte(pos + 1)
        if int_type_byte & 0xF0 != 0x10:
            raise InvalidObject('Long length not followed by int type', pos + 1, '0x1n', hex(int_type_byte))
        int_length = 2 ** (int_type_byte & 0x0F)
        if int_length not in VALID_INT_SIZES:
            raise InvalidObject('Bad length field size', pos + 1, VALID_INT_SIZES, int_length)
        int_bytes = self.Read(pos + 2, int_length, 'length')
        return int.from_bytes(int_bytes, 'big'), pos + 2 + int_length

    def ReadRefs(self, pos, count, what='array'):
        ref_size = self.object_ref_size
        raw = self.Read(pos, count * ref_size, what + ' reference')
        return [int.from_bytes(raw[i:i + ref_size], 'big') for i in range(0, len(raw), ref_size)]

    def DecodeObject(self, ref, depth):
        '''Resolve object reference, results are memoised per parse'''
        if ref >= self.object_count:
            raise InvalidReference('Object reference outside object table', None, '<{}'.format(self.object_count), ref)
        if ref in self.cache:
            return self.CopyShared(self.cache[ref], ref)
        if ref in self.in_progress:
            raise RecursionLimitExceeded('Cyclic object reference', self.offset_table[ref], 'acyclic', ref)
        if depth > self.max_depth:
            raise RecursionLimitExceeded('Object nesting too deep', self.offset_table[ref], self.max_depth, depth)
        self.in_progress.add(ref)
        try:
            value = self.DecodeObjectAt(self.offset_table[ref], depth)
        finally:
            self.in_progress.discard(ref)
        self.cache[ref] = value
        return value

    def CopyShared(self, value, ref):
        '''Memoised arrays/dicts are copied, so no two branches of the result are the same object'''
        if isinstance(value, list):
            self.CountShared(len(value), ref)
            items = []
            for item in value:
                items.append(self.CopyShared(item, ref))
            return items
        elif isinstance(value, dict):
            self.CountShared(len(value), ref)
            copied = {}
            for k, v in value.items():
                copied[k] = self.CopyShared(v, ref)
            return copied
        return value # immutable

    def CountShared(self, count, ref):
        self.shared_items += count
        if self.shared_items > self.max_shared_items:
            raise RecursionLimitExceeded('Repeated references expand to too many objects', self.offset_table[ref],
                                         self.max_shared_items, self.shared_items)

    def DecodeObjectAt(self, offset, depth):
        type_byte = self.ReadByte(offset)
        marker = type_byte & 0xF0
        if marker == 0x00:
            if type_byte == 0x00: # Null    0000 0000
                return None
            elif type_byte == 0x08: # False 0000 1000
                return False
            elif type_byte == 0x09: # True  0000 1001
                return True
            elif type_byte == 0x0F: # Fill  0000 1111
                return None
        elif marker == 0x10: # Int    0001 nnnn
            int_length = 2 ** (type_byte & 0x0F)
            if int_length not in (1, 2, 4, 8, 16):
                raise InvalidObject('Unsupported int size', offset, (1, 2, 4, 8, 16), int_length)
            return self.DecodeMultibyteInt(self.Read(offset + 1, int_length, 'int'), int_length >= 8)
        elif marker == 0x20: # Real   0010 nnnn
            nibble = type_byte & 0x0F
            if nibble == 2:
                return struct.unpack('>f', self.Read(offset + 1, 4, 'real'))[0]
            elif nibble == 3:
                return struct.unpack('>d', self.Read(offset + 1, 8, 'real'))[0]
            raise InvalidObject('Unsupported real size', offset, (4, 8), 2 ** nibble)
        elif type_byte == 0x33: # Date 0011 0011
            date_value = struct.unpack('>d', self.Read(offset + 1, 8, 'date'))[0]
            try:
                return CommonFunctions.ReadMacAbsoluteTime(date_value)
            except (OverflowError, ValueError):
                log.warning('Date value {} at offset 0x{:X} out of range'.format(date_value, offset))
                return datetime.datetime.min
        elif marker == 0x40: # Data   0100 nnnn
            data_length, pos = self.ReadCount(type_byte, offset)
            return self.Read(pos, data_length, 'data')
        elif marker == 0x50: # ASCII  0101 nnnn
            ascii_length, pos = self.ReadCount(type_byte, offset)
            raw = self.Read(pos, ascii_length, 'ascii string')
            try:
                return raw.decode('ascii')
            except UnicodeDecodeError as ex:
                raise InvalidObject('Bad ascii string: ' + str(ex), offset)
        elif marker == 0x60: # UTF-16 0110 nnnn
            char_count, pos = self.ReadCount(type_byte, offset)
            raw = self.Read(pos, char_count * 2, 'utf-16 string') # Length is characters - 16bit width
            try:
                return raw.decode('utf_16_be')
            except UnicodeDecodeError as ex:
                raise InvalidObject('Bad utf-16 string: ' + str(ex), offset)
        elif marker == 0x80: # UID    1000 nnnn
            uid_length = (type_byte & 0x0F) + 1
            return int.from_bytes(self.Read(offset + 1, uid_length, 'uid'), 'big')
        elif marker in (0xA0, 0xC0): # Array 1010 nnnn, Set 1100 nnnn
            count, pos = self.ReadCount(type_byte, offset)
            refs = self.ReadRefs(pos, count)
            items = []
            for ref in refs:
                items.append(self.DecodeObject(ref, depth + 1))
            return items
        elif marker == 0xD0: # Dict   1101 nnnn
            return self.DecodeDict(type_byte, offset, depth)
        raise InvalidObject('Unknown object type', offset, None, hex(type_byte))

    def DecodeDict(self, type_byte, offset, depth):
        dict_count, pos = self.ReadCount(type_byte, offset)
        key_refs = self.ReadRefs(pos, dict_count, 'dict key')
        value_pos = pos + dict_count * self.object_ref_size
        try:
            value_refs = self.ReadRefs(value_pos, dict_count, 'dict value')
        except InvalidObject:
            available = max(self.objects_end - value_pos, 0) // self.object_ref_size
            raise MalformedDict('Dictionary value references do not match keys', offset, dict_count, available)

        dict_result = {}
        for key_ref, value_ref in zip(key_refs, value_refs):
            key = self.DecodeObject(key_ref, depth + 1)
            try:
                hash(key)
            except TypeError:
                raise MalformedDict('Dictionary key is not a scalar', offset, 'hashable key', type(key).__name__)
            dict_result[key] = self.DecodeObject(value_ref, depth + 1)
        return dict_result

def decode_container(data, max_depth=MAX_RECURSION_DEPTH, max_shared_items=MAX_SHARED_ITEMS):
    '''
    Decodes binary plist bytes, returns the top level object as native python types
    (None, bool, int, float, datetime, str, bytes, list, dict).
    A date whose value cannot be represented (NaN, out of range) is returned as
    datetime.datetime.min, treat that as "no valid date" rather than year 1.
    Repeated references to the same array or dictionary give separate copies.
    Raises a DecodeError subclass for anything that is not a well formed bplist00.
    '''
    if not isinstance(data, (bytes, bytearray, memoryview)):
        raise TypeError('decode_container() needs bytes, got ' + type(data).__name__)
    try:
        return BplistReader(data, max_depth, max_shared_items).Parse()
    except RecursionError:
        raise RecursionLimitExceeded('Object nesting exceeds interpreter stack', None, max_depth, None)

loads = decode_container

def load(f, max_depth=MAX_RECURSION_DEPTH):
    '''Reads and converts a file-like object containing a binary property list'''
    return decode_container(f.read(), max_depth)

def get_value(value, key_path):
    '''
    Walks a decoded plist using key_path, a sequence of dict keys and list indexes,
    or a string of keys separated by '/'. Raises KeyError if path does not exist.
    '''
    if isinstance(key_path, str):
        key_path = [k for k in key_path.split('/') if k]
    current = value
    for key in key_path:
        if isinstance(current, dict):
            if key not in current:
                raise KeyError(key)
            current = current[key]
        elif isinstance(current, list):
            try:
                current = current[int(key)]
            except (ValueError, IndexError):
                raise KeyError(key)
        else:
            raise KeyError(key)
    return current

def get_blob(value, key_path):
    '''Same as get_value() but the value found must be binary data'''
    blob = get_value(value, key_path)
    if not isinstance(blob, bytes):
        raise TypeError('Value at {} is {}, not data'.format(key_path, type(blob).__name__))
    return blob
