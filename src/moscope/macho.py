#
#  moscope | moscope
#  macho.py
#
#  This file contains the container level parsing: magic classification, the fat arch table, thin
#    mach headers, and the load command walker.
#
#  This file is part of moscope. moscope is free software that
#  is made available under the MIT license. Consult the
#  file "LICENSE" that is distributed together with this file
#  for the exact licensing terms.
#
#  Copyright (c) moscope authors 2025.
#

import os
from collections import namedtuple
from enum import Enum
from io import BytesIO
from typing import BinaryIO, List, Optional, Union

from moscope_macho import *
from moscope.exceptions import *
from moscope.util import log


class ContainerKind(Enum):
    THIN_32_BE = 0
    THIN_32_LE = 1
    THIN_64_BE = 2
    THIN_64_LE = 3
    FAT_32_BE = 4
    FAT_32_LE = 5
    FAT_64_BE = 6
    FAT_64_LE = 7

    @property
    def is_fat(self) -> bool:
        return self.name.startswith('FAT')

    @property
    def is_64(self) -> bool:
        return '_64_' in self.name

    @property
    def byte_order(self) -> str:
        return 'big' if self.name.endswith('_BE') else 'little'


# keyed on the first four bytes read big endian
MAGIC_KINDS = {
    MH_MAGIC: ContainerKind.THIN_32_BE,
    MH_CIGAM: ContainerKind.THIN_32_LE,
    MH_MAGIC_64: ContainerKind.THIN_64_BE,
    MH_CIGAM_64: ContainerKind.THIN_64_LE,
    FAT_MAGIC: ContainerKind.FAT_32_BE,
    FAT_CIGAM: ContainerKind.FAT_32_LE,
    FAT_MAGIC_64: ContainerKind.FAT_64_BE,
    FAT_CIGAM_64: ContainerKind.FAT_64_LE,
}


def require_range(data, offset: int, size: int, what: str, exc=TruncatedRecordException):
    """Raise exc unless data[offset:offset+size] lies entirely inside data."""
    if offset < 0 or size < 0 or offset + size > len(data):
        raise exc(f'{what} ({size} bytes) extends beyond end of file ({len(data)} bytes)', stage=what,
                  offset=offset)


def read_struct(data, offset: int, struct_type, byte_order: str, what: str = None,
                exc=TruncatedRecordException):
    """
    Decode struct_type from data at offset after checking the whole record is in bounds.

    :param data: file bytes
    :param offset: file offset of the record
    :param struct_type: moscope_macho struct class
    :param byte_order: "little" or "big"
    :param what: stage name used in error messages, defaults to the struct name
    :param exc: exception type raised when the record doesn't fit
    """
    size = struct_type.size()
    require_range(data, offset, size, what or struct_type.__name__, exc)
    struct = Struct.create_with_bytes(struct_type, data[offset:offset + size], byte_order)
    struct.off = offset
    return struct


def classify_container(data, offset: int = 0) -> ContainerKind:
    if offset < 0 or offset + 4 > len(data):
        raise UnsupportedFiletypeException('File too small to contain a magic number', stage='magic',
                                           offset=offset)
    magic = int.from_bytes(data[offset:offset + 4], 'big')
    if magic not in MAGIC_KINDS:
        log.error(f'Bad Magic: {hex(magic)}')
        raise UnsupportedFiletypeException(f'Unrecognized magic {hex(magic)}', stage='magic', offset=offset)
    return MAGIC_KINDS[magic]


class FatHeader:
    def __init__(self, kind: ContainerKind, nfat_arch: int):
        self.kind = kind
        self.nfat_arch = nfat_arch

    @property
    def arch_struct(self):
        return fat_arch_64 if self.kind.is_64 else fat_arch

    def serialize(self):
        return {'kind': self.kind.name, 'nfat_arch': self.nfat_arch}


def read_fat_header(data) -> FatHeader:
    kind = classify_container(data)
    if not kind.is_fat:
        raise UnsupportedFiletypeException('Not a fat binary', stage='fat_header', offset=0)
    header = read_struct(data, 0, fat_header, kind.byte_order, 'fat_header')
    log.debug_more(header)
    return FatHeader(kind, header.nfat_arch)


def read_fat_archs(data, header: FatHeader) -> List[Union[fat_arch, fat_arch_64]]:
    """
    Decode the fat arch table that follows the fat header.

    Each record is bounds checked before it is read, so a huge nfat_arch fails at end of file instead of
        walking off the buffer.
    """
    struct_type = header.arch_struct
    archs = []
    cursor = FAT_HEADER_SIZE
    for i in range(header.nfat_arch):
        arch = read_struct(data, cursor, struct_type, header.kind.byte_order, f'fat_arch[{i}]')
        log.debug_more(arch)
        archs.append(arch)
        cursor += struct_type.size()
    return archs


ArchSlice = namedtuple('ArchSlice', ['offset', 'size'])


def arch_slice(arch) -> ArchSlice:
    return ArchSlice(arch.offset, arch.size)


class MachHeader:
    """
    Decoded thin Mach-O header, 32 or 64 bit, in the byte order its magic implies.
    """

    def __init__(self, kind: ContainerKind, raw: Union[mach_header, mach_header_64]):
        self.kind = kind
        self.raw = raw
        self.offset = raw.off
        self.magic = raw.magic
        self.cpu_type = raw.cpu_type
        self.cpu_subtype = raw.cpu_subtype
        self.file_type = raw.filetype
        self.ncmds = raw.ncmds
        self.sizeofcmds = raw.sizeofcmds
        self.flags = raw.flags
        self.reserved = raw.reserved if kind.is_64 else None

    @property
    def is64(self) -> bool:
        return self.kind.is_64

    @property
    def byte_order(self) -> str:
        return self.kind.byte_order

    @property
    def header_size(self) -> int:
        return MACH_HEADER_64_SIZE if self.is64 else MACH_HEADER_SIZE

    @property
    def word_size(self) -> int:
        return 64 if self.is64 else 32

    @property
    def ptr_size(self) -> int:
        return 8 if self.is64 else 4

    @property
    def cpu_type_name(self) -> str:
        return cpu_type_name(self.cpu_type)

    @property
    def cpu_subtype_name(self) -> str:
        return cpu_subtype_name(self.cpu_type, self.cpu_subtype)

    @property
    def file_type_name(self) -> str:
        return filetype_name(self.file_type)

    @property
    def flag_names(self) -> List[str]:
        return header_flag_names(self.flags)

    def serialize(self):
        return {
            'magic': self.magic,
            'kind': self.kind.name,
            'cpu_type': self.cpu_type,
            'cpu_type_name': self.cpu_type_name,
            'cpu_subtype': self.cpu_subtype,
            'cpu_subtype_name': self.cpu_subtype_name,
            'file_type': self.file_type,
            'file_type_name': self.file_type_name,
            'ncmds': self.ncmds,
            'sizeofcmds': self.sizeofcmds,
            'flags': self.flags,
            'flag_names': self.flag_names,
            'reserved': self.reserved,
        }


def read_thin_header(data, slice_: ArchSlice) -> MachHeader:
    kind = classify_container(data, slice_.offset)
    if kind.is_fat:
        raise UnsupportedFiletypeException('Expected a thin Mach-O header, found a fat magic',
                                           stage='mach_header', offset=slice_.offset)
    struct_type = mach_header_64 if kind.is_64 else mach_header
    raw = read_struct(data, slice_.offset, struct_type, kind.byte_order, 'mach_header')
    log.debug_more(raw)
    return MachHeader(kind, raw)


class LoadCommand:
    """
    Generic (cmd, cmdsize) view of a load command. ``offset`` is file absolute.
    """

    def __init__(self, cmd: int, cmdsize: int, offset: int, index: int = 0):
        self.cmd = cmd
        self.cmdsize = cmdsize
        self.offset = offset
        self.index = index

    @property
    def name(self) -> str:
        return load_command_name(self.cmd)

    @property
    def end(self) -> int:
        return self.offset + self.cmdsize

    def __str__(self):
        return f'{self.name} ({hex(self.cmd)}) size={self.cmdsize} at {hex(self.offset)}'

    def serialize(self):
        return {'cmd': self.cmd, 'name': self.name, 'cmdsize': self.cmdsize, 'offset': self.offset}


def read_load_commands(data, offset: int, ncmds: int, word_size: int, byte_order: str,
                       sizeofcmds: Optional[int] = None) -> List[LoadCommand]:
    """
    Walk ``ncmds`` load commands starting at file offset ``offset``.

    :param data: file bytes
    :param offset: first byte after the mach header
    :param ncmds: command count from the header
    :param word_size: 32 or 64; sets the cmdsize alignment (4 or 8)
    :param byte_order: "little" or "big"
    :param sizeofcmds: when given, the cmdsize total must match it
    :return: commands in file order
    """
    if word_size not in (32, 64):
        raise ValueError(f'word_size must be 32 or 64, not {word_size}')
    align = word_size // 8

    commands = []
    cursor = offset
    for i in range(ncmds):
        stage = f'load_command[{i}]'
        header = read_struct(data, cursor, load_command, byte_order, stage)
        if header.cmdsize < LOAD_COMMAND_HEADER_SIZE:
            raise MalformedMachOException(f'cmdsize {header.cmdsize} is smaller than a load command header',
                                          stage=stage, offset=cursor)
        if header.cmdsize % align != 0:
            raise MisalignedRecordException(f'cmdsize {header.cmdsize} is not a multiple of {align}',
                                            stage=stage, offset=cursor)
        require_range(data, cursor, header.cmdsize, stage, OutOfBoundsReferenceException)

        command = LoadCommand(header.cmd, header.cmdsize, cursor, i)
        log.debug_tm(str(command))
        commands.append(command)
        cursor += header.cmdsize

    if sizeofcmds is not None and cursor - offset != sizeofcmds:
        raise MalformedMachOException(f'load commands span {cursor - offset} bytes but sizeofcmds is {sizeofcmds}',
                                      stage='load_commands', offset=offset)
    return commands


class MachOFile:
    """
    Whole-file view: reads the bytes once, classifies the container, and lists the architecture slices.

    For thin files ``archs`` is empty and ``slices`` holds a single ArchSlice(0, None).
    """

    def __init__(self, file: Union[BinaryIO, BytesIO, bytes, bytearray]):
        if isinstance(file, (bytes, bytearray, memoryview)):
            self.filename = ''
            self.data = bytes(file)
        else:
            self.filename = os.path.basename(file.name) if hasattr(file, 'name') else ''
            file.seek(0)
            self.data = file.read()

        self.kind = classify_container(self.data)
        self.fat_header: Optional[FatHeader] = None
        self.archs = []

        if self.kind.is_fat:
            self.fat_header = read_fat_header(self.data)
            self.archs = read_fat_archs(self.data, self.fat_header)
            self.slices = [arch_slice(arch) for arch in self.archs]
        else:
            self.slices = [ArchSlice(0, None)]

        log.info(f'{self.filename or "<memory>"}: {self.kind.name} with {len(self.slices)} slice(s)')

    def serialize(self):
        return {
            'filename': self.filename,
            'kind': self.kind.name,
            'fat_header': self.fat_header.serialize() if self.fat_header else None,
            'archs': [arch.serialize() for arch in self.archs],
        }
