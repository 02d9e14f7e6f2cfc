#
#  moscope | moscope
#  segment.py
#
#  Segment and section decoding, plus the section classifier.
#
#  This file is part of moscope. moscope is free software that
#  is made available under the MIT license. Consult the
#  file "LICENSE" that is distributed together with this file
#  for the exact licensing terms.
#
#  Copyright (c) moscope authors 2025.
#

from enum import Enum
from typing import List, Union

from moscope_macho import *
from moscope.exceptions import *
from moscope.macho import LoadCommand, read_struct
from moscope.util import log


class SegmentName:
    """
    A 16 byte, NUL padded segment or section name.

    Equality and hashing use all 16 raw bytes, so a name that fills the field without a terminator is still
        compared exactly. A SegmentName only equals another SegmentName; wrap a str before comparing or
        using it as a key. ``str()`` gives the name with the padding stripped.
    """

    SIZE = 16

    def __init__(self, raw: Union[bytes, bytearray, str]):
        if isinstance(raw, str):
            raw = raw.encode('utf-8')
        raw = bytes(raw)
        if len(raw) > self.SIZE:
            raise ValueError(f'Names are limited to {self.SIZE} bytes, got {len(raw)}')
        self.raw = raw.ljust(self.SIZE, b'\x00')

    def __eq__(self, other):
        if isinstance(other, SegmentName):
            return self.raw == other.raw
        return NotImplemented

    def __hash__(self):
        return hash(self.raw)

    def __str__(self):
        return self.raw.rstrip(b'\x00').decode('utf-8', errors='replace')

    def __repr__(self):
        return f'SegmentName({str(self)!r})'


class SectionKind(Enum):
    CODE = 0
    CSTRING = 1
    CONST_DATA = 2
    DATA = 3
    BSS = 4
    SYMBOL_STUBS = 5
    LAZY_SYMBOL_POINTERS = 6
    NON_LAZY_SYMBOL_POINTERS = 7
    GOT = 8
    OBJC = 9
    EXCEPTION = 10
    UNWIND = 11
    INIT = 12
    LINKEDIT = 13
    OTHER = 14
    UNKNOWN = 15


# Explicit section types win over names.
SECTION_TYPE_KINDS = {
    SectionType.S_CSTRING_LITERALS: SectionKind.CSTRING,
    SectionType.S_ZEROFILL: SectionKind.BSS,
    SectionType.S_GB_ZEROFILL: SectionKind.BSS,
    SectionType.S_THREAD_LOCAL_ZEROFILL: SectionKind.BSS,
    SectionType.S_SYMBOL_STUBS: SectionKind.SYMBOL_STUBS,
    SectionType.S_LAZY_SYMBOL_POINTERS: SectionKind.LAZY_SYMBOL_POINTERS,
    SectionType.S_LAZY_DYLIB_SYMBOL_POINTERS: SectionKind.LAZY_SYMBOL_POINTERS,
    SectionType.S_NON_LAZY_SYMBOL_POINTERS: SectionKind.NON_LAZY_SYMBOL_POINTERS,
    SectionType.S_MOD_INIT_FUNC_POINTERS: SectionKind.INIT,
    SectionType.S_MOD_TERM_FUNC_POINTERS: SectionKind.INIT,
    SectionType.S_INIT_FUNC_OFFSETS: SectionKind.INIT,
}

_OBJC_SECTIONS = ['__objc_classlist', '__objc_nlclslist', '__objc_catlist', '__objc_nlcatlist',
                  '__objc_protolist', '__objc_imageinfo', '__objc_const', '__objc_selrefs', '__objc_protorefs',
                  '__objc_classrefs', '__objc_superrefs', '__objc_ivar', '__objc_data']

_WELL_KNOWN = [
    ('__TEXT', '__text', SectionKind.CODE),
    ('__TEXT', '__stubs', SectionKind.SYMBOL_STUBS),
    ('__TEXT', '__auth_stubs', SectionKind.SYMBOL_STUBS),
    ('__TEXT', '__stub_helper', SectionKind.CODE),
    ('__TEXT', '__const', SectionKind.CONST_DATA),
    ('__TEXT', '__cstring', SectionKind.CSTRING),
    ('__TEXT', '__objc_methname', SectionKind.CSTRING),
    ('__TEXT', '__objc_classname', SectionKind.CSTRING),
    ('__TEXT', '__objc_methtype', SectionKind.CSTRING),
    ('__TEXT', '__oslogstring', SectionKind.CSTRING),
    ('__TEXT', '__gcc_except_tab', SectionKind.EXCEPTION),
    ('__TEXT', '__eh_frame', SectionKind.EXCEPTION),
    ('__TEXT', '__unwind_info', SectionKind.UNWIND),
    ('__TEXT', '__ustring', SectionKind.OTHER),
    ('__TEXT', '__swift5_typeref', SectionKind.OTHER),
    ('__DATA', '__data', SectionKind.DATA),
    ('__DATA', '__const', SectionKind.CONST_DATA),
    ('__DATA', '__bss', SectionKind.BSS),
    ('__DATA', '__common', SectionKind.BSS),
    ('__DATA', '__got', SectionKind.GOT),
    ('__DATA', '__la_symbol_ptr', SectionKind.LAZY_SYMBOL_POINTERS),
    ('__DATA', '__nl_symbol_ptr', SectionKind.NON_LAZY_SYMBOL_POINTERS),
    ('__DATA', '__mod_init_func', SectionKind.INIT),
    ('__DATA', '__mod_term_func', SectionKind.INIT),
    ('__DATA', '__cfstring', SectionKind.OTHER),
    ('__DATA', '__thread_vars', SectionKind.DATA),
    ('__DATA', '__thread_data', SectionKind.DATA),
    ('__DATA_CONST', '__const', SectionKind.CONST_DATA),
    ('__DATA_CONST', '__got', SectionKind.GOT),
    ('__DATA_CONST', '__mod_init_func', SectionKind.INIT),
    ('__DATA_CONST', '__cfstring', SectionKind.OTHER),
    ('__AUTH_CONST', '__auth_got', SectionKind.GOT),
    ('__AUTH_CONST', '__const', SectionKind.CONST_DATA),
    ('__AUTH_CONST', '__cfstring', SectionKind.OTHER),
    ('__AUTH', '__data', SectionKind.DATA),
    ('__OBJC', '__class', SectionKind.OBJC),
    ('__OBJC', '__meta_class', SectionKind.OBJC),
    ('__OBJC', '__module_info', SectionKind.OBJC),
    ('__OBJC', '__image_info', SectionKind.OBJC),
    ('__OBJC', '__message_refs', SectionKind.OBJC),
    ('__OBJC', '__cls_refs', SectionKind.OBJC),
] + [(segment, name, SectionKind.OBJC) for segment in ('__DATA', '__DATA_CONST', '__AUTH_CONST')
     for name in _OBJC_SECTIONS]

WELL_KNOWN_SECTIONS = {(SegmentName(seg), SegmentName(sect)): kind for seg, sect, kind in _WELL_KNOWN}

LINKEDIT = SegmentName('__LINKEDIT')


def classify_section(segment_name, section_name, flags: int) -> SectionKind:
    """
    Pick a SectionKind for a section.

    The type code in the low byte of ``flags`` is checked first; only S_REGULAR and type codes without a
        dedicated kind fall through to the table of well-known (segment, section) names.
    """
    section_type = flags & S_FLAGS_MASKS.SECTION_TYPE
    if section_type in SECTION_TYPE_KINDS:
        return SECTION_TYPE_KINDS[section_type]

    if not isinstance(segment_name, SegmentName):
        segment_name = SegmentName(segment_name)
    if not isinstance(section_name, SegmentName):
        section_name = SegmentName(section_name)

    kind = WELL_KNOWN_SECTIONS.get((segment_name, section_name))
    if kind is not None:
        return kind
    if segment_name == LINKEDIT:
        return SectionKind.LINKEDIT
    return SectionKind.UNKNOWN


class Section:
    """
    A section header from inside a segment command. 32 bit fields are widened; ``reserved3`` is None for
        32 bit images.
    """

    def __init__(self, cmd: Union[section, section_64]):
        self.cmd = cmd
        self.name = SegmentName(cmd.sectname)
        self.segment_name = SegmentName(cmd.segname)
        self.vm_address = cmd.addr
        self.size = cmd.size
        self.file_offset = cmd.offset
        self.align = cmd.align
        self.reloff = cmd.reloff
        self.nreloc = cmd.nreloc
        self.flags = cmd.flags
        self.reserved1 = cmd.reserved1
        self.reserved2 = cmd.reserved2
        self.reserved3 = getattr(cmd, 'reserved3', None)
        self.kind = classify_section(self.segment_name, self.name, self.flags)

    @property
    def type_name(self) -> str:
        return section_type_name(self.flags)

    @property
    def attributes(self) -> List[str]:
        return section_attribute_names(self.flags)

    def __str__(self):
        return f'Section {self.segment_name},{self.name} at {hex(self.vm_address)} ({self.kind.name})'

    def serialize(self):
        return {
            'name': str(self.name),
            'segment_name': str(self.segment_name),
            'vm_address': self.vm_address,
            'size': self.size,
            'file_offset': self.file_offset,
            'align': self.align,
            'reloff': self.reloff,
            'nreloc': self.nreloc,
            'flags': self.flags,
            'type': self.type_name,
            'attributes': self.attributes,
            'reserved1': self.reserved1,
            'reserved2': self.reserved2,
            'reserved3': self.reserved3,
            'kind': self.kind.name,
        }


class Segment:
    """
    A decoded LC_SEGMENT / LC_SEGMENT_64 with its sections in declaration order.
    """

    def __init__(self, cmd: Union[segment_command, segment_command_64], sections: List[Section],
                 load_command: LoadCommand):
        self.cmd = cmd
        self.load_command = load_command
        self.is64 = isinstance(cmd, segment_command_64)
        self.name = SegmentName(cmd.segname)
        self.vm_address = cmd.vmaddr
        self.vm_size = cmd.vmsize
        self.file_offset = cmd.fileoff
        self.file_size = cmd.filesize
        self.maxprot = cmd.maxprot
        self.initprot = cmd.initprot
        self.nsects = cmd.nsects
        self.flags = cmd.flags
        self.sections = sections

    def section(self, name) -> Union[Section, None]:
        name = name if isinstance(name, SegmentName) else SegmentName(name)
        for sect in self.sections:
            if sect.name == name:
                return sect
        return None

    def __str__(self):
        return f'Segment {self.name} at {hex(self.vm_address)}'

    def serialize(self):
        return {
            'name': str(self.name),
            'vm_address': self.vm_address,
            'vm_size': self.vm_size,
            'file_offset': self.file_offset,
            'file_size': self.file_size,
            'maxprot': protection_string(self.maxprot),
            'initprot': protection_string(self.initprot),
            'nsects': self.nsects,
            'flags': self.flags,
            'sections': [sect.serialize() for sect in self.sections],
        }


def read_segment(data, load_command: LoadCommand, byte_order: str) -> Segment:
    """
    Decode a segment command and its section array.

    The segment header and every section header have to fit inside the command's own cmdsize; a count that
        would run past it is rejected before anything beyond it is read.
    """
    if load_command.cmd == LOAD_COMMAND.SEGMENT_64:
        cmd_type, sect_type = segment_command_64, section_64
    elif load_command.cmd == LOAD_COMMAND.SEGMENT:
        cmd_type, sect_type = segment_command, section
    else:
        raise ValueError(f'{load_command.name} is not a segment command')

    stage = f'{load_command.name}[{load_command.index}]'
    if load_command.cmdsize < cmd_type.size():
        raise OutOfBoundsReferenceException(
            f'cmdsize {load_command.cmdsize} is too small for {cmd_type.__name__} ({cmd_type.size()} bytes)',
            stage=stage, offset=load_command.offset)
    cmd = read_struct(data, load_command.offset, cmd_type, byte_order, stage)

    needed = cmd_type.size() + cmd.nsects * sect_type.size()
    if needed > load_command.cmdsize:
        raise OutOfBoundsReferenceException(
            f'{cmd.nsects} sections need {needed} bytes but cmdsize is {load_command.cmdsize}',
            stage=stage, offset=load_command.offset)

    sections = []
    cursor = load_command.offset + cmd_type.size()
    for _ in range(cmd.nsects):
        sect = Section(read_struct(data, cursor, sect_type, byte_order, stage))
        log.debug_more(str(sect))
        sections.append(sect)
        cursor += sect_type.size()

    segment = Segment(cmd, sections, load_command)
    log.debug(f'{segment} with {len(sections)} section(s)')
    return segment
