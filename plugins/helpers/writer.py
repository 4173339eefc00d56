'''
   Copyright (c) 2017 Yogesh Khatri

   This file is part of loginitems_apt (macOS LoginItems Artifact Parsing Tool).
   Usage or distribution of this software/code is subject to the
   terms of the MIT License.

'''

import binascii
import collections
import csv
import datetime
import jsonlines
import logging
import os
import sqlite3

from enum import IntEnum
from plugins.helpers.common import CommonFunctions

log = logging.getLogger('MAIN.HELPERS.WRITER')

class DataType(IntEnum):
    INTEGER = 1 # Whole Numbers
    REAL    = 2 # Floating point numbers
    TEXT    = 3 # Strings and Text Dates
    BLOB    = 4 # Binary
    DATE    = 5 # datetime object, not a native SQLite type, will be stored as TEXT

class OutputParams:
    def __init__(self):
        self.output_path = ''
        self.write_csv = False
        self.write_tsv = False
        self.write_jsonl = False
        self.write_sql = False
        self.output_db_path = ''

class DataWriter:

    def __init__(self, output_params, name, column_info):
        '''
        output_params is OutputParams object
        name is suggested name for table name and/or file name
        column_info is an ordered list of tuples that defines output column names and types
          column_info = [ ('Name1', DataType.TEXT), ('Name2', DataType.BLOB), ..]
        '''
        self.output_path = output_params.output_path
        self.name = name
        self.row_count = 0
        self.column_info = collections.OrderedDict(column_info)
        self.csv_writer = None
        self.tsv_writer = None
        self.jsonl_writer = None
        self.sql_writer = None

        if output_params.write_sql:
            self.sql_writer = SqliteWriter()
            self.sql_writer.OpenSqliteDb(output_params.output_db_path)
        if output_params.write_csv:
            self.csv_writer = CsvWriter()
            self.csv_writer.CreateCsvFile(os.path.join(self.output_path, name + ".csv"))
        if output_params.write_tsv:
            self.tsv_writer = CsvWriter(is_tsv=True)
            self.tsv_writer.CreateCsvFile(os.path.join(self.output_path, name + ".tsv"))
        if output_params.write_jsonl:
            self.jsonl_writer = JsonlWriter()
            self.jsonl_writer.CreateJsonlFile(os.path.join(self.output_path, name + ".jsonl"))

    def FinishWrites(self):
        '''This must be called to properly close files'''
        if self.csv_writer: self.csv_writer.Cleanup()
        if self.tsv_writer: self.tsv_writer.Cleanup()
        if self.jsonl_writer: self.jsonl_writer.Cleanup()
        if self.sql_writer: self.sql_writer.CloseDb()

    def WriteHeaders(self):
        '''Writes Headings for csv/tsv, creates Table for sqlite'''
        headers = list(self.column_info.keys())
        if self.csv_writer: self.csv_writer.WriteRow(headers)
        if self.tsv_writer: self.tsv_writer.WriteRow(headers)
        if self.sql_writer: self.sql_writer.CreateTable(self.column_info, self.name)

    def ToText(self, value, data_type):
        '''Convert a value for text outputs (csv/tsv/jsonl)'''
        if value is None:
            return ''
        if data_type == DataType.BLOB:
            return binascii.hexlify(value).decode("ascii").upper() if value else ''
        if isinstance(value, datetime.datetime):
            return str(value)
        if isinstance(value, (list, tuple)):
            return ', '.join(str(x) for x in value)
        return value

    def ToSql(self, value, data_type):
        if value is None:
            return None
        if data_type == DataType.BLOB:
            return bytes(value)
        if isinstance(value, datetime.datetime):
            return str(value)
        if isinstance(value, (list, tuple)):
            return ', '.join(str(x) for x in value)
        return value

    def WriteRows(self, rows):
        '''Write multiple rows at once, 'rows' must be a list of dicts keyed on column name'''
        if len(rows) == 0: # Nothing to write!
            return
        if self.row_count == 0: #Write Header row
            self.WriteHeaders()
        text_rows = []
        sql_rows = []
        for row in rows:
            if not isinstance(row, dict):
                raise ValueError("WriteRows() can only handle dictionary rows, passed variable was " + str(type(row)))
            if self.csv_writer or self.tsv_writer or self.jsonl_writer:
                text_rows.append([self.ToText(row.get(col, None), t) for col, t in self.column_info.items()])
            if self.sql_writer:
                sql_rows.append([self.ToSql(row.get(col, None), t) for col, t in self.column_info.items()])
        if self.csv_writer: self.csv_writer.WriteRows(text_rows)
        if self.tsv_writer: self.tsv_writer.WriteRows(text_rows)
        if self.jsonl_writer: self.jsonl_writer.WriteRows(text_rows, self.column_info.keys())
        if self.sql_writer: self.sql_writer.WriteRows(sql_rows)
        self.row_count += len(rows)

class SqliteWriter:
    def __init__(self):
        self.filepath = ''
        self.conn = None
        self.table_name = ''
        self.executemany_query = ''

    def OpenSqliteDb(self, filepath):
        '''Open an existing db or create it'''
        self.filepath = filepath
        try:
            self.conn = sqlite3.connect(self.filepath)
        except (OSError, sqlite3.Error) as ex:
            log.error('Failed to open/create sqlite db at path {}'.format(filepath))
            log.exception('Error details')
            raise ex

    @staticmethod
    def CreateSqliteDb(filepath):
        '''Creates an empty db at next available file name, returns its path'''
        filepath = CommonFunctions.GetNextAvailableFileName(filepath)
        conn = sqlite3.connect(filepath)
        conn.close()
        return filepath

    def GetNextAvailableTableName(self, name):
        '''Get unused table name by appending _xx where xx=00-99'''
        index = 1
        new_name = name + '_{0:02d}'.format(index)
        while (CommonFunctions.TableExists(self.conn, new_name)):
            index += 1
            new_name = name + '_{0:02d}'.format(index)
        return new_name

    def CreateTable(self, column_info, table_name):
        '''
           Creates table with given name, if table exists,
           a new name is selected (name_xx)
        '''
        self.table_name = table_name
        if CommonFunctions.TableExists(self.conn, table_name):
            self.table_name = self.GetNextAvailableTableName(table_name)
            log.info('Table {} exists, changing tablename to {}'.format(table_name, self.table_name))
        columns = ','.join('"{}" {}'.format(k, v.name if v != DataType.DATE else 'TEXT') for k, v in column_info.items())
        query = 'CREATE TABLE "{}" ({})'.format(self.table_name, columns)
        try:
            self.conn.execute(query)
            self.conn.commit()
        except sqlite3.Error as ex:
            log.exception("error creating table " + self.table_name)
            raise ex
        self.executemany_query = 'INSERT INTO "' + self.table_name + '" VALUES (?' + ',?'*(len(column_info) - 1) + ')'
        return self.table_name

    def WriteRows(self, rows):
        try:
            self.conn.executemany(self.executemany_query, rows)
            self.conn.commit()
        except (sqlite3.Error, OverflowError) as ex:
            log.exception("error writing to table " + self.table_name)

    def CloseDb(self):
        if self.conn is not None:
            self.conn.close()
            self.conn = None

class CsvWriter:
    def __init__(self, delete_empty_files=True, is_tsv=False):
        self.filepath = ''
        self.is_tsv = is_tsv
        self.codec = 'utf-16' if is_tsv else 'utf-8'
        self.pycsv_writer = None
        self.file_handle = None
        self.delete_empty_files = delete_empty_files

    def CreateCsvFile(self, filepath):
        '''
        Creates a csv/tsv file with suggested name,
        if name is not available, get the next available name
        eg: name01.csv or name02.csv or ..
        '''
        self.filepath = CommonFunctions.GetNextAvailableFileName(filepath)
        try:
            self.file_handle = open(self.filepath, 'w', encoding=self.codec, newline='')
            if not self.is_tsv:
                self.pycsv_writer = csv.writer(self.file_handle, delimiter=',', quotechar='"', quoting=csv.QUOTE_MINIMAL, dialect='excel')
        except (OSError, csv.Error) as ex:
            log.error('Failed to create {} file at path {}'.format('tsv' if self.is_tsv else 'csv', self.filepath))
            log.exception('Error details')
            raise ex

    def SanitizeForTsv(self, row):
        '''Remove \r \n \t from each item to write'''
        return [str(item).replace('\r\n', ',').replace('\r', ',').replace('\n', ',').replace('\t', ' ') for item in row]

    def WriteRow(self, row):
        self.WriteRows([row])

    def WriteRows(self, rows):
        try:
            if self.is_tsv:
                for row in rows:
                    self.file_handle.write("\t".join(self.SanitizeForTsv(row)) + '\r\n')
            else:
                self.pycsv_writer.writerows(rows)
        except (OSError, csv.Error) as ex:
            log.exception('Failed to write {} rows'.format('tsv' if self.is_tsv else 'csv'))

    def Cleanup(self):
        if self.file_handle is not None:
            self.file_handle.close()
            self.file_handle = None
        if self.delete_empty_files:
            try:
                if os.path.getsize(self.filepath) == 0:
                    log.debug("Deleting empty file : " + self.filepath)
                    os.remove(self.filepath)
            except OSError as ex:
                log.warning('Failed to check/remove empty file {}: {}'.format(self.filepath, str(ex)))

class JsonlWriter:
    def __init__(self):
        self.filepath = ''
        self.jsonl_writer = None

    def CreateJsonlFile(self, filepath):
        '''
        Creates a jsonl file with suggested name,
        if name is not available, get the next available name
        eg: name01.jsonl or name02.jsonl or ..
        '''
        self.filepath = CommonFunctions.GetNextAvailableFileName(filepath)
        try:
            self.jsonl_writer = jsonlines.open(self.filepath, mode='w')
        except OSError as ex:
            log.error(f'Failed to create JSONL file at path {self.filepath}')
            log.exception('Error details')
            raise ex

    def WriteRows(self, rows, column_names):
        column_names = list(column_names)
        for row in rows:
            to_write = dict(zip(column_names, row))
            for k, v in to_write.items():
                if not isinstance(v, (str, int, float)):
                    to_write[k] = str(v)
            try:
                self.jsonl_writer.write(to_write)
            except (OSError, TypeError, ValueError) as ex:
                log.exception('Failed to write jsonl row ' + str(row))

    def Cleanup(self):
        if self.jsonl_writer is not None:
            self.jsonl_writer.close()
            self.jsonl_writer = None

# Plugins should call this function to write out data formatted as a table
def WriteList(data_description, data_name, data_list, data_type_info, output_params):
    '''
    Writes a list of dicts, output types defined by output_params
    Parameters include -
    data_description : String describing what data is provided
    data_name        : Name for file or db table
    data_list        : List of dicts keyed on column name
    data_type_info   : List of (column name, DataType) tuples
    output_params    : OutputParams object
    '''
    if len(data_list) == 0:
        log.info("No " + data_description + " was retrieved!")
        return
    try:
        log.debug ("Trying to write out " + data_description)
        writer = DataWriter(output_params, data_name, data_type_info)
        try:
            writer.WriteRows(data_list)
        except (OSError, sqlite3.Error) as ex:
            log.error ("Failed to write row data")
            log.exception ("Error details")
        finally:
            writer.FinishWrites()
    except (OSError, sqlite3.Error) as ex:
        log.error ("Failed to initialize data writer")
        log.exception ("Error details")
