'''
   Copyright (c) 2017 Yogesh Khatri

   This file is part of loginitems_apt (macOS LoginItems Artifact Parsing Tool).
   Usage or distribution of this software/code is subject to the
   terms of the MIT License.

   decode_errors.py
   ----------------
   Exceptions raised by the binary plist and bookmark decoders.
   Structural problems are raised, problems confined to a single
   bookmark field are collected as FieldDecodeWarning objects.
'''

class DecodeError(ValueError):
    '''Base class for all decoder failures'''

    def __init__(self, message, offset=None, expected=None, found=None):
        self.message = message
        self.offset = offset
        self.expected = expected
        self.found = found
        super().__init__(self.__str__())

    def __str__(self):
        s = self.message
        if self.offset is not None:
            s += ' at offset 0x{:X}'.format(self.offset)
        if self.expected is not None or self.found is not None:
            s += ' (expected {!r}, found {!r})'.format(self.expected, self.found)
        return s

    def __reduce__(self):
        return (self.__class__, (self.message, self.offset, self.expected, self.found))

# Binary plist (container) errors

class InvalidMagic(DecodeError):
    pass

class InvalidTrailer(DecodeError):
    pass

class InvalidReference(DecodeError):
    '''Object reference index outside the object table'''
    pass

class InvalidObject(DecodeError):
    '''Unknown type marker or object payload running out of bounds'''
    pass

class MalformedDict(DecodeError):
    pass

class RecursionLimitExceeded(DecodeError):
    '''Object/record graph is cyclic or nested too deep'''
    pass

# Bookmark errors

class InvalidBookmarkMagic(DecodeError):
    pass

class MalformedBookmark(DecodeError):
    pass

class TocChainLimitExceeded(MalformedBookmark):
    pass

class FieldDecodeError(DecodeError):
    '''A single bookmark record could not be read, only that field is lost'''
    pass

class FieldDecodeWarning:
    '''Non-fatal problem with one bookmark field, the field is left unset'''

    def __init__(self, toc_id, key, offset, reason):
        self.toc_id = toc_id
        self.key = key
        self.offset = offset
        self.reason = reason

    def __repr__(self):
        return 'FieldDecodeWarning(toc={}, key={}, offset={}, reason={!r})'.format(
                    self.toc_id,
                    '0x{:X}'.format(self.key) if isinstance(self.key, int) else repr(self.key),
                    '0x{:X}'.format(self.offset) if self.offset is not None else None,
                    self.reason)

    def __str__(self):
        return self.__repr__()

    def __eq__(self, other):
        if not isinstance(other, FieldDecodeWarning):
            return NotImplemented
        return (self.toc_id, self.key, self.offset, self.reason) == \
               (other.toc_id, other.key, other.offset, other.reason)

    def __hash__(self):
        return hash((self.toc_id, self.key, self.offset, self.reason))
