'''
   Copyright (c) 2017 Yogesh Khatri

   This file is part of loginitems_apt (macOS LoginItems Artifact Parsing Tool).
   Usage or distribution of this software/code is subject to the
   terms of the MIT License.

   loginitems_apt.py
   -----------------
   Parses LoginItems artifact files (backgrounditems.btm and
   loginitems.<UID>.plist) copied off a mac, and writes out
   the bookmark details of every login item found.

   For usage information, run:
     python loginitems_apt.py -h
'''

import sys
import os
import argparse
import logging
import sqlite3
import time

import plugins.loginitems as loginitems
from plugins.helpers.writer import *
from plugin import *

__VERSION = "1.0"
__PROGRAMNAME = "macOS LoginItems Artifact Parsing Tool"
__EMAIL = "yogesh@swiftforensics.com"

LOG_LEVELS = {
    'INFO': logging.INFO,
    'DEBUG': logging.DEBUG,
    'WARNING': logging.WARNING,
    'ERROR': logging.ERROR,
    'CRITICAL': logging.CRITICAL
}

def GetArgParser():
    arg_parser = argparse.ArgumentParser(description='Reads macOS LoginItems from backgrounditems.btm and loginitems.<UID>.plist files\n'\
                                                     f'You are running {__PROGRAMNAME} version {__VERSION}\n\n'\
                                                     'Note: The default output is sqlite',
                                         formatter_class=argparse.RawTextHelpFormatter)
    arg_parser.add_argument('-i', '--input_path', nargs='+', help='Path to input file(s)') # Not optional !
    arg_parser.add_argument('-o', '--output_path', help='Path where output files will be created') # Not optional !
    arg_parser.add_argument('-c', '--csv', action="store_true", help='Save output as CSV files')
    arg_parser.add_argument('-t', '--tsv', action="store_true", help='Save output as TSV files (utf-16)')
    arg_parser.add_argument('-j', '--jsonl', action="store_true", help='Save output as JSONL files')
    arg_parser.add_argument('-l', '--log_level', help='Log levels: INFO, DEBUG, WARNING, ERROR, CRITICAL (Default is INFO)')
    return arg_parser

def main(argv=None):
    args = GetArgParser().parse_args(argv)

    if args.output_path:
        if (os.name != 'nt'):
            if args.output_path.startswith('~/') or args.output_path == '~': # for linux/mac, translate ~ to user profile folder
                args.output_path = os.path.expanduser(args.output_path)
        print ("Output path was : {}".format(args.output_path))
        if not CheckOutputPath(args.output_path):
            sys.exit("Exiting -> Output path not valid!")
    else:
        sys.exit("Exiting -> No output_path provided, the -o option is mandatory!")

    if args.input_path:
        for in_file in args.input_path:
            if not os.path.exists(in_file):
                sys.exit("Exiting -> Input path '{}' does not exist!".format(in_file))
    else:
        sys.exit("Exiting -> No input file provided, the -i option is mandatory. Please provide a file to process!")

    log_level = logging.INFO
    if args.log_level:
        log_level = LOG_LEVELS.get(args.log_level.upper(), None)
        if log_level is None:
            sys.exit("Exiting -> Invalid input type for log level. Valid values are INFO, DEBUG, WARNING, ERROR, CRITICAL")

    log = CreateLogger(os.path.join(args.output_path, "Log." + str(time.strftime("%Y%m%d-%H%M%S")) + ".txt"), log_level, log_level) # Create logging infrastructure
    log.setLevel(log_level)
    log.info("Started {}, version {}".format(__PROGRAMNAME, __VERSION))
    log.info("Dates and times are in UTC unless the specific artifact being parsed saves it as local time!")
    log.debug(' '.join(sys.argv))
    LogLibraryVersions(log)
    LogPlatformInfo(log)

    output_params = OutputParams()
    output_params.output_path = args.output_path
    output_params.write_csv = args.csv
    output_params.write_tsv = args.tsv
    output_params.write_jsonl = args.jsonl

    try:
        log.debug("Trying to create db @ " + os.path.join(output_params.output_path, "loginitems.db"))
        output_params.output_db_path = SqliteWriter.CreateSqliteDb(os.path.join(output_params.output_path, "loginitems.db"))
        output_params.write_sql = True
    except (OSError, sqlite3.Error):
        log.exception('Exception occurred when tried to create Sqlite db')
        sys.exit('Exiting -> Cannot create sqlite db!')

    time_processing_started = time.time()
    log.info("-"*50)
    login_items = loginitems.Plugin_Start_Standalone(args.input_path, output_params)
    log.info("-"*50)

    run_time = time.time() - time_processing_started
    log.info("Found {} login item(s)".format(len(login_items)))
    log.info("Finished in time = {}".format(time.strftime('%H:%M:%S', time.gmtime(run_time))))
    log.info("Review the Log file and report any ERRORs or EXCEPTIONS to the developers")
    return login_items

if __name__ == '__main__':
    main()
