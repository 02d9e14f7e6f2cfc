#
#  moscope | moscope
#  image.py
#
#  Image is the analysis result for one architecture slice; MachOImageLoader fills it out from the
#    slice's load commands.
#
#  This file is part of moscope. moscope is free software that
#  is made available under the MIT license. Consult the
#  file "LICENSE" that is distributed together with this file
#  for the exact licensing terms.
#
#  Copyright (c) moscope authors 2025.
#

import uuid
from typing import List, Optional

from moscope_macho import *
from moscope.dylib import LinkedImage, RPath, parse_dylib, parse_dylinker, parse_rpath
from moscope.exceptions import *
from moscope.macho import ArchSlice, LoadCommand, MachHeader, read_load_commands, read_struct, read_thin_header
from moscope.segment import Section, Segment, SegmentName, read_segment
from moscope.strings import image_strings
from moscope.symtab import (DysymtabInfo, Symbol, SymbolTable, SymtabInfo, parse_dysymtab, parse_symtab,
                            read_indirect_symbols, read_symbols, resolve_symbols)
from moscope.util import log, macho_is_malformed
from moscope.vm import VMImage, build_vm_image


class Image:
    """
    Everything moscope knows about one thin Mach-O (or one slice of a fat file).

    :ivar arch_slice: where the slice sits in the file
    :ivar header: decoded mach header
    :ivar load_commands: every load command, in order, including ones moscope doesn't decode
    :ivar segments: decoded segments in load command order
    :ivar sections: all sections of all segments, flattened in the same order (n_sect numbering)
    :ivar linked_images: dylibs this image links against
    :ivar dylib: LC_ID_DYLIB identity, for dylibs
    :ivar rpaths: LC_RPATH entries in order
    :ivar symbols: resolved symbol list, empty if the image has no symtab or it wasn't loaded
    :ivar vm: VMImage built from the segments
    """

    def __init__(self, data, arch_slice: ArchSlice, header: MachHeader):
        self.data = data
        self.arch_slice = arch_slice
        self.header = header

        self.load_commands: List[LoadCommand] = []
        self.segments: List[Segment] = []
        self.sections: List[Section] = []
        self.linked_images: List[LinkedImage] = []
        self.dylib: Optional[LinkedImage] = None
        self.rpaths: List[RPath] = []

        self.symtab: Optional[SymtabInfo] = None
        self.dysymtab: Optional[DysymtabInfo] = None
        self.indirect_symbols: List[int] = []
        self.symbols: List[Symbol] = []
        self.symbol_table = SymbolTable([])

        self.vm = VMImage()

        self.uuid: Optional[str] = None
        self.entry_offset: Optional[int] = None
        self.platform = PlatformType.UNKNOWN
        self.minos: Optional[str] = None
        self.sdk_version: Optional[str] = None
        self.dylinker: Optional[str] = None
        self.dyld_environment: List[str] = []
        self.skipped_commands: List[LoadCommand] = []

    @property
    def slice_offset(self) -> int:
        return self.arch_slice.offset

    @property
    def byte_order(self) -> str:
        return self.header.byte_order

    @property
    def install_name(self) -> str:
        return self.dylib.install_name if self.dylib else ''

    @property
    def entry_point(self) -> Optional[int]:
        """vm address of LC_MAIN's entry offset, found through the segment mapping that file offset"""
        if self.entry_offset is None:
            return None
        for seg in self.segments:
            if seg.file_size and seg.file_offset <= self.entry_offset < seg.file_offset + seg.file_size:
                return seg.vm_address + (self.entry_offset - seg.file_offset)
        return None

    def segment(self, name) -> Optional[Segment]:
        name = name if isinstance(name, SegmentName) else SegmentName(name)
        for seg in self.segments:
            if seg.name == name:
                return seg
        return None

    def strings(self, min_len=None, pattern=None, sections=None):
        return image_strings(self, min_len, pattern, sections)

    def serialize(self):
        return {
            'header': self.header.serialize(),
            'slice_offset': self.slice_offset,
            'load_commands': [cmd.serialize() for cmd in self.load_commands],
            'segments': [seg.serialize() for seg in self.segments],
            'install_name': self.install_name,
            'linked_images': [image.serialize() for image in self.linked_images],
            'rpaths': [rpath.serialize() for rpath in self.rpaths],
            'uuid': self.uuid,
            'entry_point': self.entry_point,
            'platform': self.platform.name,
            'minos': self.minos,
            'sdk_version': self.sdk_version,
            'dylinker': self.dylinker,
            'dyld_environment': self.dyld_environment,
            'symtab': self.symtab.serialize() if self.symtab else None,
            'dysymtab': self.dysymtab.serialize() if self.dysymtab else None,
            'symbols': self.symbol_table.serialize(),
            'vm': self.vm.serialize(),
            'skipped_commands': [cmd.serialize() for cmd in self.skipped_commands],
        }


class MachOImageLoader:
    """
    This class takes a slice of a file, parses through the raw data behind it, and returns a filled out Image.

    Failures in the header or the load command walk abort the slice. A failure decoding one command
        propagates too, unless ``ignore.MALFORMED`` is set, in which case the command is logged, recorded in
        ``Image.skipped_commands``, and the rest of the image still loads.
    """

    @classmethod
    def load(cls, data, arch_slice: ArchSlice = ArchSlice(0, None), load_symtab=True) -> Image:
        """
        :param data: whole-file bytes
        :param arch_slice: slice to load; ArchSlice(0, None) for thin files
        :param load_symtab: read and resolve the symbol table
        :return: Processed image object
        """
        log.info(f'Loading image at {hex(arch_slice.offset)}')
        header = read_thin_header(data, arch_slice)
        image = Image(data, arch_slice, header)

        image.load_commands = read_load_commands(data, arch_slice.offset + header.header_size, header.ncmds,
                                                 header.word_size, header.byte_order, header.sizeofcmds)
        log.info(f'registered {len(image.load_commands)} Load Commands')

        cls._parse_load_commands(image)

        log.info("Building VM image")
        image.vm = build_vm_image(image.segments, data, arch_slice.offset)

        if load_symtab and image.symtab:
            cls._load_symbols(image)

        return image

    @classmethod
    def _parse_load_commands(cls, image: Image) -> None:
        for command in image.load_commands:
            try:
                cls._parse_load_command(image, command)
            except MalformedMachOException as ex:
                macho_is_malformed(ex)
                image.skipped_commands.append(command)

    @classmethod
    def _parse_load_command(cls, image: Image, command: LoadCommand) -> None:
        data = image.data
        byte_order = image.byte_order
        cmd = command.cmd

        if cmd == LOAD_COMMAND.SEGMENT_64 or cmd == LOAD_COMMAND.SEGMENT:
            segment = read_segment(data, command, byte_order)
            image.segments.append(segment)
            image.sections.extend(segment.sections)
            log.info(f'Loaded Segment {segment.name}')

        elif cmd == LOAD_COMMAND.ID_DYLIB:
            image.dylib = parse_dylib(data, command, byte_order)
            log.debug(f'Loaded local dylib_command with install_name {image.dylib.install_name}')

        elif cmd in DYLIB_COMMANDS:
            image.linked_images.append(parse_dylib(data, command, byte_order))

        elif cmd == LOAD_COMMAND.RPATH:
            image.rpaths.append(parse_rpath(data, command, byte_order))

        elif cmd == LOAD_COMMAND.LOAD_DYLINKER or cmd == LOAD_COMMAND.ID_DYLINKER:
            image.dylinker = parse_dylinker(data, command, byte_order)

        elif cmd == LOAD_COMMAND.DYLD_ENVIRONMENT:
            image.dyld_environment.append(parse_dylinker(data, command, byte_order))

        elif cmd == LOAD_COMMAND.SYMTAB:
            image.symtab = parse_symtab(data, command, byte_order)

        elif cmd == LOAD_COMMAND.DYSYMTAB:
            image.dysymtab = parse_dysymtab(data, command, byte_order)

        elif cmd == LOAD_COMMAND.UUID:
            raw = cls._read_command(data, command, uuid_command, byte_order)
            image.uuid = str(uuid.UUID(bytes=raw.uuid)).upper()
            log.info(f'image UUID: {image.uuid}')

        elif cmd == LOAD_COMMAND.MAIN:
            raw = cls._read_command(data, command, entry_point_command, byte_order)
            image.entry_offset = raw.entryoff

        elif cmd == LOAD_COMMAND.BUILD_VERSION:
            raw = cls._read_command(data, command, build_version_command, byte_order)
            try:
                image.platform = PlatformType(raw.platform)
            except ValueError:
                log.warn(f'Unknown platform {raw.platform}')
            image.minos = version_string(raw.minos)
            image.sdk_version = version_string(raw.sdk)
            log.info(f'Loaded platform {image.platform.name} | Minimum OS {image.minos} | '
                     f'SDK Version {image.sdk_version}')

        elif cmd in VERSION_MIN_COMMANDS:
            # Only override this if it wasn't set by build_version
            if image.platform == PlatformType.UNKNOWN:
                raw = cls._read_command(data, command, version_min_command, byte_order)
                image.platform = VERSION_MIN_COMMANDS[cmd]
                image.minos = version_string(raw.version)
                image.sdk_version = version_string(raw.sdk)

        else:
            log.debug_more(f'Not decoding {command}')

    @staticmethod
    def _read_command(data, command: LoadCommand, struct_type, byte_order):
        stage = f'{command.name}[{command.index}]'
        if command.cmdsize < struct_type.size():
            raise OutOfBoundsReferenceException(f'cmdsize {command.cmdsize} is too small for '
                                                f'{struct_type.__name__}', stage=stage, offset=command.offset)
        return read_struct(data, command.offset, struct_type, byte_order, stage)

    @classmethod
    def _load_symbols(cls, image: Image) -> None:
        log.info("Loading Symbol Table")
        try:
            symbols = read_symbols(image.data, image.slice_offset, image.symtab, image.byte_order, image.header.is64)
            indirect = []
            if image.dysymtab:
                indirect = read_indirect_symbols(image.data, image.slice_offset, image.dysymtab, image.byte_order)
        except MalformedMachOException as ex:
            macho_is_malformed(ex)
            image.skipped_commands.append(image.symtab.load_command)
            return

        image.indirect_symbols = indirect
        image.symbols = resolve_symbols(symbols, indirect, image.sections, image.header.ptr_size)
        image.symbol_table = SymbolTable(image.symbols)
