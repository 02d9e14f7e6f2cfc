#
#  moscope | moscope
#  util.py
#
#  Process-wide switches and miscellaneous helpers used around moscope
#
#  This file is part of moscope. moscope is free software that
#  is made available under the MIT license. Consult the
#  file "LICENSE" that is distributed together with this file
#  for the exact licensing terms.
#
#  Copyright (c) moscope authors 2025.
#
import concurrent.futures
import os
from importlib import metadata
from typing import List

from pygments import highlight
from pygments.formatters.terminal import TerminalFormatter
from pygments.lexers.data import JsonLexer

from libmoscope.log import log, LogLevel
from moscope.exceptions import MalformedMachOException

try:
    MOSCOPE_VERSION = metadata.version('moscope')
except metadata.PackageNotFoundError:
    MOSCOPE_VERSION = '0.1.0'

THREAD_COUNT = max(1, (os.cpu_count() or 2) - 1)


class ignore:
    # skip (and log) load commands that fail to decode instead of aborting the slice
    MALFORMED = False


class opts:
    DISABLE_COLOR = False
    STRING_MIN_LENGTH = 4
    MAX_VM_READ = 256 * 1024 * 1024


class QueueItem:
    def __init__(self, func=None, args=None):
        self.args = args if args is not None else []
        self.func = func


class Queue:
    """
    Runs a batch of callables, optionally on a thread pool.

    Results land in ``returns`` in submission order. Exceptions propagate; callers that want per-item
        failure isolation catch inside the callable.
    """

    def __init__(self):
        self.items: List[QueueItem] = []
        self.returns: List = []
        self.multithread = False

    def add(self, func, *args):
        self.items.append(QueueItem(func, list(args)))

    def go(self):
        if self.multithread:
            with concurrent.futures.ThreadPoolExecutor(max_workers=THREAD_COUNT) as executor:
                futures = [executor.submit(item.func, *item.args) for item in self.items]
            self.returns = [f.result() for f in futures]
        else:
            self.returns = [item.func(*item.args) for item in self.items]


def highlight_json(text):
    if opts.DISABLE_COLOR:
        return text
    return highlight(text, JsonLexer(), TerminalFormatter())


def macho_is_malformed(ex: MalformedMachOException):
    """Re-raise ex *if* we dont want to ignore bad mach-os, otherwise log it

    :param ex: the decode failure
    """
    if not ignore.MALFORMED:
        raise ex
    log.error(f'Skipping malformed record: {ex}')

