#
#  moscope | libmoscope
#  log.py
#
#  Leveled logger used across moscope. Output goes through swappable callables so that
#    embedding tools (and the test-suite) can redirect or capture it.
#
#  This file is part of moscope. moscope is free software that
#  is made available under the MIT license. Consult the
#  file "LICENSE" that is distributed together with this file
#  for the exact licensing terms.
#
#  Copyright (c) moscope authors 2025.
#

from enum import Enum
import sys
import inspect
import os

from libmoscope.structs import Struct


class LogLevel(Enum):
    NONE = -1
    ERROR = 0
    WARN = 1
    INFO = 2
    DEBUG = 3
    DEBUG_MORE = 4
    # one line per decoded record; pipe it to a file
    DEBUG_TOO_MUCH = 5


def print_err(msg):
    print(msg, file=sys.stderr)


class log:
    """
    Static, process-wide logger.

    Set ``log.LOG_LEVEL`` to choose verbosity. ``LOG_FUNC`` receives debug/info lines, ``LOG_ERR`` receives
        warnings and errors.
    """

    LOG_LEVEL = LogLevel.ERROR
    LOG_FUNC = print
    LOG_ERR = print_err

    @staticmethod
    def get_class_from_frame(fr):
        if 'self' in fr.frame.f_locals:
            return type(fr.frame.f_locals["self"]).__name__
        elif 'cls' in fr.frame.f_locals:
            return fr.frame.f_locals['cls'].__name__

        return None

    @staticmethod
    def line():
        # [0] is line(), [1] is _emit(), [2] is the public method, [3] is the caller
        stack_frame = inspect.stack()[3]
        filename = os.path.basename(stack_frame[1]).split('.')[0]
        cn = log.get_class_from_frame(stack_frame)
        call_from = cn + ':' if cn is not None else ""
        call_from += stack_frame[3]
        return f'moscope.{filename}:L#{stack_frame[2]}:{call_from}()'

    @staticmethod
    def _emit(level: LogLevel, tag: str, msg, to_err: bool):
        if log.LOG_LEVEL.value < level.value:
            return
        if isinstance(msg, Struct):
            msg = str(msg)
        func = log.LOG_ERR if to_err else log.LOG_FUNC
        func(f'{tag} - {log.line()} - {msg}')

    @staticmethod
    def debug(msg=""):
        log._emit(LogLevel.DEBUG, 'DEBUG', msg, False)

    @staticmethod
    def debug_more(msg=""):
        log._emit(LogLevel.DEBUG_MORE, 'DEBUG-2', msg, False)

    @staticmethod
    def debug_tm(msg=""):
        log._emit(LogLevel.DEBUG_TOO_MUCH, 'DEBUG-3', msg, False)

    @staticmethod
    def info(msg=""):
        log._emit(LogLevel.INFO, 'INFO', msg, False)

    @staticmethod
    def warn(msg=""):
        log._emit(LogLevel.WARN, 'WARN', msg, True)

    @staticmethod
    def warning(msg=""):
        log._emit(LogLevel.WARN, 'WARN', msg, True)

    @staticmethod
    def error(msg=""):
        log._emit(LogLevel.ERROR, 'ERROR', msg, True)
