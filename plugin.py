'''
   Copyright (c) 2017 Yogesh Khatri

   This file is part of loginitems_apt (macOS LoginItems Artifact Parsing Tool).
   Usage or distribution of this software/code is subject to the
   terms of the MIT License.

   plugin.py
   ---------
   Common functions used by the command line runner, output path
   checks and logging setup.
'''
import logging
import os
import sys
import platform
import traceback

import construct
import jsonlines

def CheckOutputPath(output_path):
    '''Checks validity of outputpath, if it does not exist, it creates it'''
    ret = False
    try:
        if os.path.isdir(output_path): # Check output path provided
            ret = True
        else: # Either path does not exist or it is not a folder
            if os.path.isfile(output_path):
                print("Error: There is already a file existing by that name. Cannot create folder : " + output_path)
            else: # Try creating folder
                try:
                    os.makedirs(output_path)
                    ret = True
                except OSError as ex:
                    print("Error: Cannot create output folder : " + output_path + "\nError Details: " + str(ex))
    except OSError as ex:
        print("Error: Unknown exception, error details are: " + str(ex))
    return ret

def CreateLogger(log_file_path, log_file_level=logging.DEBUG, log_console_level=logging.INFO):
    '''Creates the logging classes for both console & file'''
    try:
        # Log file setting
        logger = logging.getLogger('MAIN')
        log_file_handler = logging.FileHandler(log_file_path, encoding='utf8')
        log_file_format  = logging.Formatter('%(asctime)s|%(name)s|%(levelname)s|%(message)s', datefmt='%Y-%m-%d %H:%M:%S')
        log_file_handler.setFormatter(log_file_format)
        log_file_handler.setLevel(log_file_level)
        logger.addHandler(log_file_handler)

        # console handler
        log_console_handler = logging.StreamHandler()
        log_console_handler.setLevel(log_console_level)
        log_console_format  = logging.Formatter('%(name)s-%(levelname)s-%(message)s')
        log_console_handler.setFormatter(log_console_format)
        logger.addHandler(log_console_handler)
    except OSError:
        print ("Error while trying to create log file\nError Details:\n")
        traceback.print_exc()
        sys.exit ("Program aborted..could not create log file!")
    return logger

def LogLibraryVersions(log):
    '''Log the versions of libraries used'''
    log.info('Python version    = {}'.format(sys.version))
    log.info('construct version = {}'.format(getattr(construct, '__version__', 'unknown')))
    log.info('jsonlines version = {}'.format(getattr(jsonlines, '__version__', 'unknown')))

def LogPlatformInfo(log):
    system = platform.system()
    if system == 'Darwin':
        ver = platform.mac_ver()
        log.info(f"Running on macOS {ver[0]}, Architecture {ver[2]}")
    elif system == 'Windows':
        ver = platform.win32_ver()
        log.info(f"Running on Windows {ver[0]}, Version={ver[1]}, Service Pack={ver[2]}, Other={ver[3]}")
    else:
        log.info(f"Running on {system}, uname info={platform.uname()}")
