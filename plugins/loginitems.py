'''
   Copyright (c) 2017 Yogesh Khatri

   This file is part of loginitems_apt (macOS LoginItems Artifact Parsing Tool).
   Usage or distribution of this software/code is subject to the
   terms of the MIT License.

   loginitems.py
   -------------
   Reads LoginItems from
     ~/Library/Application Support/com.apple.backgroundtaskmanagementagent/backgrounditems.btm
     /var/db/com.apple.xpc.launchd/loginitems.<UID>.plist   (apps with bundled login items)
   Locating these files is left to the caller, this only parses them.
'''

import logging
import os

from plugins.helpers.bookmark import BOOKMARK_MAGIC, decode_bookmark
from plugins.helpers.bplist import decode_container
from plugins.helpers.decode_errors import DecodeError
from plugins.helpers.loginitem import assemble_login_item, make_bundled_login_item
from plugins.helpers.writer import *

__Plugin_Name = "LOGINITEMS" # Cannot have spaces, and must be all caps!
__Plugin_Friendly_Name = "Login Items"
__Plugin_Version = "1.0"
__Plugin_Description = "Reads login items from backgrounditems.btm and loginitems.<UID>.plist bookmark data"
__Plugin_Author = "Yogesh Khatri"
__Plugin_Author_Email = "yogesh@swiftforensics.com"
__Plugin_Modes = "ARTIFACTONLY"
__Plugin_ArtifactOnly_Usage = 'Provide backgrounditems.btm file(s) and/or loginitems.<UID>.plist file(s) '\
                              'found at /var/db/com.apple.xpc.launchd/'

log = logging.getLogger('MAIN.' + __Plugin_Name) # Do not rename or remove this ! This is the logger object

#---- Do not change the variable names in above section ----#

MIN_BOOKMARK_SIZE = 48 # header + data offset field

LoginItemColumns = [
    ('Name', DataType.TEXT), ('Path', DataType.TEXT), ('CNID Path', DataType.TEXT),
    ('Target CNID', DataType.INTEGER), ('Target Creation Time', DataType.DATE),
    ('Volume Path', DataType.TEXT), ('Volume URL', DataType.TEXT), ('Volume Name', DataType.TEXT),
    ('Volume UUID', DataType.TEXT), ('Volume Size', DataType.INTEGER), ('Volume Creation Time', DataType.DATE),
    ('Volume Flags', DataType.TEXT), ('Volume Root', DataType.TEXT), ('Localized Name', DataType.TEXT),
    ('Security Extension RW', DataType.TEXT), ('Security Extension RO', DataType.TEXT),
    ('Target Flags', DataType.TEXT), ('Raw Flags', DataType.INTEGER), ('Creator Username', DataType.TEXT),
    ('Creator UID', DataType.INTEGER), ('Folder Index', DataType.INTEGER), ('Creation Options', DataType.INTEGER),
    ('Is App Bundled', DataType.TEXT), ('App ID', DataType.TEXT), ('App Binary', DataType.TEXT),
    ('Has Executable Flag', DataType.TEXT), ('Has File Reference Flag', DataType.TEXT), ('Source', DataType.TEXT)
]

def GetBookmarkBlobs(container):
    '''
    Returns list of bookmark blobs from a decoded backgrounditems.btm.
    This is an NSKeyedArchiver plist, bookmarks are raw data in the $objects
    array, or inside dictionaries there (NS.data).
    '''
    candidates = []
    if not isinstance(container, dict):
        log.error('Top level object is {}, expected dictionary'.format(type(container).__name__))
        return candidates
    objects = container.get('$objects', None)
    if isinstance(objects, list):
        for item in objects:
            if isinstance(item, bytes):
                candidates.append(item)
            elif isinstance(item, dict):
                for value in item.values():
                    if isinstance(value, bytes) and len(value) >= MIN_BOOKMARK_SIZE:
                        candidates.append(value)
    else:
        log.debug('No $objects array, looking for bookmark data in top level arrays')
        for value in container.values():
            if isinstance(value, list):
                candidates.extend(item for item in value if isinstance(item, bytes))
    return [blob for blob in candidates if blob[0:4] == BOOKMARK_MAGIC]

def ReadBookmarkItem(blob, source, is_bundled_app):
    '''Returns LoginItem or None if the bookmark could not be read'''
    try:
        bm = decode_bookmark(blob)
    except DecodeError as ex:
        log.error('Failed to parse bookmark data in {}: {}'.format(source, str(ex)))
        return None
    if bm.warnings:
        log.warning('{} field(s) of bookmark in {} could not be read'.format(len(bm.warnings), source))
    log.debug(bm)
    return assemble_login_item(bm, source, is_bundled_app)

def ReadBackgroundItems(data, source):
    '''Parse backgrounditems.btm bytes, returns list of LoginItem'''
    login_items = []
    try:
        container = decode_container(data)
    except DecodeError as ex:
        log.error('Failed to read loginitem plist {}: {}'.format(source, str(ex)))
        return login_items

    blobs = GetBookmarkBlobs(container)
    if not blobs:
        log.info('No loginitems found in {}'.format(source))
    for blob in blobs:
        item = ReadBookmarkItem(blob, source, False)
        if item:
            login_items.append(item)
    return login_items

def ReadBundledLoginItems(data, source):
    '''
    Parse loginitems.<UID>.plist bytes, returns list of LoginItem.
    Keys are helper binary bundle ids, values are the parent app id,
    or bookmark data for the helper.
    '''
    login_items = []
    try:
        container = decode_container(data)
    except DecodeError as ex:
        log.error('Failed to read bundled loginitem plist {}: {}'.format(source, str(ex)))
        return login_items
    if not isinstance(container, dict):
        log.error('Top level object in {} is {}, expected dictionary'.format(source, type(container).__name__))
        return login_items

    for key, value in container.items():
        if isinstance(key, str) and key.startswith('version'):
            continue
        if isinstance(value, str):
            login_items.append(make_bundled_login_item(str(key), value, source))
            continue
        blobs = []
        if isinstance(value, bytes):
            blobs = [value]
        elif isinstance(value, list):
            blobs = [blob for blob in value if isinstance(blob, bytes)]
        bookmark_items = []
        for blob in blobs:
            item = ReadBookmarkItem(blob, source, True)
            if item:
                bookmark_items.append(item._replace(app_binary=str(key)))
        if bookmark_items:
            login_items.extend(bookmark_items)
        else: # still report the helper binary, even without app id or readable bookmark
            log.warning('No app id associated with bundled loginitem {} in {}'.format(key, source))
            login_items.append(make_bundled_login_item(str(key), '', source))
    return login_items

def IsBundledLoginItemsFile(path):
    name = os.path.basename(path).lower()
    return name.startswith('loginitems') and name.endswith('.plist')

def ProcessFile(path):
    '''Reads one artifact file, returns list of LoginItem'''
    try:
        with open(path, 'rb') as f:
            data = f.read()
    except OSError as ex:
        log.error('Failed to open file {}: {}'.format(path, str(ex)))
        return []
    if IsBundledLoginItemsFile(path):
        return ReadBundledLoginItems(data, path)
    return ReadBackgroundItems(data, path)

def LoginItemToRow(item):
    return {'Name': item.name, 'Path': item.full_path, 'CNID Path': item.cnid_path,
            'Target CNID': item.target_cnid, 'Target Creation Time': item.target_creation_time,
            'Volume Path': item.volume_path, 'Volume URL': item.volume_url, 'Volume Name': item.volume_name,
            'Volume UUID': item.volume_uuid, 'Volume Size': item.volume_size,
            'Volume Creation Time': item.volume_creation_time, 'Volume Flags': item.volume_flags,
            'Volume Root': str(item.volume_root), 'Localized Name': item.localized_name,
            'Security Extension RW': item.security_extension_rw, 'Security Extension RO': item.security_extension_ro,
            'Target Flags': item.target_flags, 'Raw Flags': item.raw_flags, 'Creator Username': item.username,
            'Creator UID': item.uid, 'Folder Index': item.folder_index, 'Creation Options': item.creation_options,
            'Is App Bundled': str(item.is_bundled_app), 'App ID': item.app_id, 'App Binary': item.app_binary,
            'Has Executable Flag': str(item.has_executable_flag), 'Has File Reference Flag': str(item.file_ref_flag),
            'Source': item.source_file
           }

def PrintAll(login_items, output_params):
    rows = [LoginItemToRow(item) for item in login_items]
    WriteList("login items", "LoginItems", rows, LoginItemColumns, output_params)

def Plugin_Start_Standalone(input_files_list, output_params):
    log.info("Module Started as standalone")
    login_items = []
    for input_path in input_files_list:
        log.debug("Input file passed was: " + input_path)
        items = ProcessFile(input_path)
        log.info('Found {} login item(s) in {}'.format(len(items), input_path))
        login_items.extend(items)

    if login_items:
        PrintAll(login_items, output_params)
    else:
        log.info('No login items found')
    return login_items

if __name__ == '__main__':
    print ("This plugin is a part of a framework and does not run independently on its own!")
