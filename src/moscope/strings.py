#
#  moscope | moscope
#  strings.py
#
#  C string extraction from string sections
#
#  This file is part of moscope. moscope is free software that
#  is made available under the MIT license. Consult the
#  file "LICENSE" that is distributed together with this file
#  for the exact licensing terms.
#
#  Copyright (c) moscope authors 2025.
#

import re
from typing import Iterable, List, Optional, Pattern

from moscope.exceptions import PatternException
from moscope.segment import SectionKind
from moscope.util import log, opts

_ESCAPES = {'\n': '\\n', '\r': '\\r', '\t': '\\t'}


def escape_control_chars(text: str) -> str:
    out = []
    for ch in text:
        if ch in _ESCAPES:
            out.append(_ESCAPES[ch])
        elif ord(ch) < 0x20 or ord(ch) == 0x7f:
            out.append(f'\\x{ord(ch):02x}')
        else:
            out.append(ch)
    return ''.join(out)


def _runs(data: bytes, min_len: int, regex: Optional[Pattern] = None) -> List[str]:
    strings = []
    for run in bytes(data).split(b'\x00'):
        if not run:
            continue
        try:
            text = run.decode('utf-8')
        except UnicodeDecodeError:
            continue
        if len(text) < min_len:
            continue
        if regex is not None and not regex.search(text):
            continue
        strings.append(escape_control_chars(text))
    return strings


def extract_strings(data: bytes, min_len: int) -> List[str]:
    """
    Split ``data`` on NUL and keep every run that is valid UTF-8 and at least ``min_len`` characters long.

    Control characters in the results are escaped (``\\n``, ``\\t``, ``\\x1b``, ...).
    """
    return _runs(data, max(min_len, 1))


def compile_pattern(pattern: str) -> Pattern:
    try:
        return re.compile(pattern)
    except re.error as ex:
        raise PatternException(f'Invalid pattern {pattern!r}: {ex}') from ex


def extract_filtered_strings(data: bytes, pattern: str) -> List[str]:
    """
    Like extract_strings with a minimum length of 1, keeping only runs ``pattern`` matches somewhere in.
    """
    return _runs(data, 1, compile_pattern(pattern))


class ParsedString:
    def __init__(self, value: str, segment_name: str, section_name: str):
        self.value = value
        self.segment_name = segment_name
        self.section_name = section_name

    def __str__(self):
        return self.value

    def serialize(self):
        return {'value': self.value, 'segment_name': self.segment_name, 'section_name': self.section_name}


def image_strings(image, min_len: Optional[int] = None, pattern: Optional[str] = None,
                  sections: Optional[Iterable[str]] = None) -> List[ParsedString]:
    """
    Extract strings from every CSTRING section of a loaded Image.

    :param image: moscope.image.Image
    :param min_len: minimum length, defaults to opts.STRING_MIN_LENGTH; ignored when a pattern is given
    :param pattern: regular expression filter
    :param sections: restrict to these section names (e.g. ``["__cstring"]``)
    """
    if min_len is None:
        min_len = opts.STRING_MIN_LENGTH
    regex = compile_pattern(pattern) if pattern is not None else None
    wanted = set(sections) if sections is not None else None

    results = []
    for sect in image.sections:
        if sect.kind != SectionKind.CSTRING:
            continue
        if wanted is not None and str(sect.name) not in wanted:
            continue
        data = image.vm.read_section(sect)
        if data is None:
            log.debug(f'{sect} has no readable contents')
            continue
        found = _runs(data, 1, regex) if regex is not None else _runs(data, max(min_len, 1))
        results.extend(ParsedString(s, str(sect.segment_name), str(sect.name)) for s in found)

    log.info(f'Found {len(results)} strings')
    return results
