#
#  moscope | moscope
#  dylib.py
#
#  Linked library, rpath, and dylinker commands. All three embed an lc_str: a command-relative offset to
#    a NUL terminated path stored inside the command itself.
#
#  This file is part of moscope. moscope is free software that
#  is made available under the MIT license. Consult the
#  file "LICENSE" that is distributed together with this file
#  for the exact licensing terms.
#
#  Copyright (c) moscope authors 2025.
#

from enum import Enum

from moscope_macho import *
from moscope.exceptions import *
from moscope.macho import LoadCommand, read_struct
from moscope.util import log


class DylibKind(Enum):
    ID = 0
    LOAD = 1
    WEAK = 2
    REEXPORT = 3
    LAZY = 4
    UPWARD = 5


DYLIB_KINDS = {
    LOAD_COMMAND.ID_DYLIB: DylibKind.ID,
    LOAD_COMMAND.LOAD_DYLIB: DylibKind.LOAD,
    LOAD_COMMAND.LOAD_WEAK_DYLIB: DylibKind.WEAK,
    LOAD_COMMAND.REEXPORT_DYLIB: DylibKind.REEXPORT,
    LOAD_COMMAND.LAZY_LOAD_DYLIB: DylibKind.LAZY,
    LOAD_COMMAND.LOAD_UPWARD_DYLIB: DylibKind.UPWARD,
}


def read_lc_str(data, load_command: LoadCommand, byte_order: str, field_offset: int = 8) -> str:
    """
    Read the path an lc_str field points at.

    :param data: file bytes
    :param load_command: the command holding the string
    :param byte_order: "little" or "big"
    :param field_offset: where the lc_str offset field sits inside the command
    :return: the path, decoded as UTF-8 with replacement characters
    """
    stage = f'{load_command.name}[{load_command.index}]'
    field_end = field_offset + 4
    if load_command.cmdsize < field_end:
        raise OutOfBoundsReferenceException(f'cmdsize {load_command.cmdsize} cannot hold the path offset',
                                            stage=stage, offset=load_command.offset)

    field_pos = load_command.offset + field_offset
    str_off = int.from_bytes(data[field_pos:field_pos + 4], byte_order)
    if str_off < field_end or str_off >= load_command.cmdsize:
        raise OutOfBoundsReferenceException(f'path offset {str_off} is outside the command '
                                            f'(cmdsize {load_command.cmdsize})', stage=stage,
                                            offset=load_command.offset)

    start = load_command.offset + str_off
    end = data.find(b'\x00', start, load_command.end)
    if end == -1:
        raise UnterminatedStringException('path is not NUL terminated inside the command', stage=stage,
                                          offset=start)
    return bytes(data[start:end]).decode('utf-8', errors='replace')


class LinkedImage:
    """
    A library this image links against (or, for DylibKind.ID, its own identity).
    """

    def __init__(self, install_name: str, cmd: dylib_command, kind: DylibKind, load_command: LoadCommand):
        self.cmd = cmd
        self.load_command = load_command
        self.install_name = install_name
        self.kind = kind
        self.timestamp = cmd.timestamp
        self.current_version = cmd.current_version
        self.compatibility_version = cmd.compatibility_version

    @property
    def weak(self) -> bool:
        return self.kind == DylibKind.WEAK

    @property
    def current_version_string(self) -> str:
        return version_string(self.current_version)

    @property
    def compatibility_version_string(self) -> str:
        return version_string(self.compatibility_version)

    def __str__(self):
        return f'({self.kind.name}) {self.install_name} {self.current_version_string}'

    def serialize(self):
        return {
            'install_name': self.install_name,
            'kind': self.kind.name,
            'timestamp': self.timestamp,
            'current_version': self.current_version_string,
            'compatibility_version': self.compatibility_version_string,
        }


class RPath:
    def __init__(self, path: str, load_command: LoadCommand):
        self.path = path
        self.load_command = load_command

    def __str__(self):
        return self.path

    def serialize(self):
        return {'path': self.path}


def parse_dylib(data, load_command: LoadCommand, byte_order: str) -> LinkedImage:
    if load_command.cmd not in DYLIB_KINDS:
        raise ValueError(f'{load_command.name} is not a dylib command')
    stage = f'{load_command.name}[{load_command.index}]'
    if load_command.cmdsize < dylib_command.size():
        raise OutOfBoundsReferenceException(f'cmdsize {load_command.cmdsize} is too small for dylib_command',
                                            stage=stage, offset=load_command.offset)
    cmd = read_struct(data, load_command.offset, dylib_command, byte_order, stage)
    name = read_lc_str(data, load_command, byte_order)
    image = LinkedImage(name, cmd, DYLIB_KINDS[load_command.cmd], load_command)
    log.debug(str(image))
    return image


def parse_rpath(data, load_command: LoadCommand, byte_order: str) -> RPath:
    if load_command.cmd != LOAD_COMMAND.RPATH:
        raise ValueError(f'{load_command.name} is not LC_RPATH')
    rpath = RPath(read_lc_str(data, load_command, byte_order), load_command)
    log.debug(f'rpath {rpath}')
    return rpath


def parse_dylinker(data, load_command: LoadCommand, byte_order: str) -> str:
    """Path from LC_LOAD_DYLINKER, LC_ID_DYLINKER or LC_DYLD_ENVIRONMENT."""
    return read_lc_str(data, load_command, byte_order)
