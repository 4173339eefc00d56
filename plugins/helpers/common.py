'''
   Copyright (c) 2017 Yogesh Khatri

   This file is part of loginitems_apt (macOS LoginItems Artifact Parsing Tool).
   Usage or distribution of this software/code is subject to the
   terms of the MIT License.

'''

import datetime
import logging
import os

from sqlite3 import Error as sqlite3Error

log = logging.getLogger('MAIN.HELPERS.COMMON')

MAC_ABSOLUTE_EPOCH = datetime.datetime(2001, 1, 1)

class CommonFunctions:

    @staticmethod
    def ReadMacAbsoluteTime(mac_abs_time): # Mac Absolute time is time epoch beginning 2001/1/1
        '''Returns naive UTC datetime object.
           Raises ValueError or OverflowError if the value is not representable (NaN, inf, too large)
        '''
        return MAC_ABSOLUTE_EPOCH + datetime.timedelta(seconds=mac_abs_time)

    @staticmethod
    def GetNextAvailableFileName(filepath):
        '''
        Checks for existing file and returns full path with next available file name
        by appending file name with a number. Ex: file01.jpg
        '''
        if os.path.exists(filepath):
            split = os.path.splitext(filepath)
            filepath_without_ext = split[0]
            ext = split[1]
            index = 1
            fullpath = filepath_without_ext + '{0:02d}'.format(index) + ext
            while (os.path.exists(fullpath)):
                index += 1
                fullpath = filepath_without_ext + '{0:02d}'.format(index) + ext
            filepath = fullpath
        return filepath

    @staticmethod
    def TableExists(db_conn, table_name):
        '''Checks if a table with specified name exists in an sqlite db'''
        try:
            cursor = db_conn.execute("SELECT name FROM sqlite_master WHERE type='table' AND name=?", (table_name,))
            for row in cursor:
                return True
        except sqlite3Error as ex:
            log.error ("In TableExists({}). Failed to list tables of db. Error Details:{}".format(table_name, str(ex)) )
        return False
