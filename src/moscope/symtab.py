#
#  moscope | moscope
#  symtab.py
#
#  LC_SYMTAB / LC_DYSYMTAB decoding and symbol resolution.
#
#  Symbols are read from the nlist array first; resolve_symbols then walks every stub and pointer section,
#    maps its slots to symbols through the indirect symbol table, and finally names each symbol's section.
#
#  This file is part of moscope. moscope is free software that
#  is made available under the MIT license. Consult the
#  file "LICENSE" that is distributed together with this file
#  for the exact licensing terms.
#
#  Copyright (c) moscope authors 2025.
#

from enum import Enum
from typing import List, Optional

from moscope_macho import *
from moscope.exceptions import *
from moscope.macho import LoadCommand, read_struct, require_range
from moscope.segment import Section, SectionKind
from moscope.util import log


class SymbolKind(Enum):
    UNDEFINED = 0
    ABSOLUTE = 1
    SECTION = 2
    PREBOUND_UNDEFINED = 3
    INDIRECT = 4
    LAZY = 5
    STUB = 6
    GOT = 7
    UNKNOWN = 8


N_TYPE_KINDS = {
    N_UNDF: SymbolKind.UNDEFINED,
    N_ABS: SymbolKind.ABSOLUTE,
    N_SECT: SymbolKind.SECTION,
    N_PBUD: SymbolKind.PREBOUND_UNDEFINED,
    N_INDR: SymbolKind.INDIRECT,
}

INDIRECT_SECTION_KINDS = (
    SectionKind.SYMBOL_STUBS,
    SectionKind.LAZY_SYMBOL_POINTERS,
    SectionKind.NON_LAZY_SYMBOL_POINTERS,
    SectionKind.GOT,
)

# Name first; the kind is only consulted for sections with unfamiliar names.
INDIRECT_SECTION_NAMES = {
    '__la_symbol_ptr': SymbolKind.LAZY,
    '__stubs': SymbolKind.STUB,
    '__auth_stubs': SymbolKind.STUB,
    '__picsymbolstub4': SymbolKind.STUB,
    '__symbolstub1': SymbolKind.STUB,
    '__got': SymbolKind.GOT,
    '__auth_got': SymbolKind.GOT,
    '__nl_symbol_ptr': SymbolKind.GOT,
}

INDIRECT_SECTION_KIND_SYMBOLS = {
    SectionKind.LAZY_SYMBOL_POINTERS: SymbolKind.LAZY,
    SectionKind.SYMBOL_STUBS: SymbolKind.STUB,
    SectionKind.NON_LAZY_SYMBOL_POINTERS: SymbolKind.GOT,
    SectionKind.GOT: SymbolKind.GOT,
}


class SymtabInfo:
    def __init__(self, cmd: symtab_command, load_command: LoadCommand):
        self.cmd = cmd
        self.load_command = load_command
        self.symoff = cmd.symoff
        self.nsyms = cmd.nsyms
        self.stroff = cmd.stroff
        self.strsize = cmd.strsize

    def serialize(self):
        return {'symoff': self.symoff, 'nsyms': self.nsyms, 'stroff': self.stroff, 'strsize': self.strsize}


class DysymtabInfo:
    """All twenty dysymtab_command fields, exposed as attributes of the same names."""

    def __init__(self, cmd: dysymtab_command, load_command: LoadCommand):
        self.cmd = cmd
        self.load_command = load_command
        for field in dysymtab_command.FIELDS:
            if field not in ('cmd', 'cmdsize'):
                setattr(self, field, getattr(cmd, field))

    def serialize(self):
        return {field: getattr(self.cmd, field) for field in dysymtab_command.FIELDS
                if field not in ('cmd', 'cmdsize')}


def _read_fixed_command(data, load_command: LoadCommand, struct_type, byte_order: str):
    stage = f'{load_command.name}[{load_command.index}]'
    if load_command.cmdsize < struct_type.size():
        raise OutOfBoundsReferenceException(f'cmdsize {load_command.cmdsize} is too small for '
                                            f'{struct_type.__name__}', stage=stage, offset=load_command.offset)
    return read_struct(data, load_command.offset, struct_type, byte_order, stage)


def parse_symtab(data, load_command: LoadCommand, byte_order: str) -> SymtabInfo:
    info = SymtabInfo(_read_fixed_command(data, load_command, symtab_command, byte_order), load_command)
    log.debug(f'symtab: {info.nsyms} symbols at {hex(info.symoff)}, strings at {hex(info.stroff)}')
    return info


def parse_dysymtab(data, load_command: LoadCommand, byte_order: str) -> DysymtabInfo:
    info = DysymtabInfo(_read_fixed_command(data, load_command, dysymtab_command, byte_order), load_command)
    log.debug(f'dysymtab: {info.nindirectsyms} indirect symbols at {hex(info.indirectsymoff)}')
    return info


class Symbol:
    """
    One nlist entry.

    ``indirect_*`` and the section names are filled in by resolve_symbols.
    """

    def __init__(self, index: int, name: Optional[str], entry):
        self.index = index
        self.name = name
        self.n_strx = entry.n_strx
        self.n_type = entry.n_type
        self.n_sect = entry.n_sect
        self.n_desc = entry.n_desc
        self.value = entry.n_value

        self.debug = bool(self.n_type & N_STAB)
        self.private_external = bool(self.n_type & N_PEXT)
        self.external = bool(self.n_type & N_EXT)
        self.kind = N_TYPE_KINDS.get(self.n_type & N_TYPE, SymbolKind.UNKNOWN)

        self.indirect_address: Optional[int] = None
        self.indirect_section: Optional[str] = None
        self.indirect_segment: Optional[str] = None
        self.segment_name: Optional[str] = None
        self.section_name: Optional[str] = None

    @property
    def section_index(self) -> Optional[int]:
        return None if self.n_sect == NO_SECT else self.n_sect

    @property
    def address(self) -> int:
        return self.indirect_address if self.indirect_address is not None else self.value

    def __str__(self):
        return f'Symbol #{self.index} {self.name} ({self.kind.name}) @ {hex(self.address)}'

    def serialize(self):
        return {
            'index': self.index,
            'name': self.name,
            'kind': self.kind.name,
            'n_type': self.n_type,
            'n_sect': self.n_sect,
            'n_desc': self.n_desc,
            'value': self.value,
            'external': self.external,
            'private_external': self.private_external,
            'debug': self.debug,
            'segment_name': self.segment_name,
            'section_name': self.section_name,
            'indirect_address': self.indirect_address,
            'indirect_section': self.indirect_section,
            'indirect_segment': self.indirect_segment,
        }


def _read_symbol_name(data, strtab_start: int, strtab_end: int, n_strx: int, index: int) -> Optional[str]:
    if n_strx == 0:
        return None
    start = strtab_start + n_strx
    if start >= strtab_end:
        raise OutOfBoundsReferenceException(f'symbol {index} name index {n_strx} is past the string table',
                                            stage='symtab', offset=start)
    end = data.find(b'\x00', start, strtab_end)
    if end == -1:
        raise UnterminatedStringException(f'symbol {index} name is not NUL terminated', stage='symtab',
                                          offset=start)
    return bytes(data[start:end]).decode('utf-8', errors='replace')


def read_symbols(data, slice_offset: int, symtab: SymtabInfo, byte_order: str, is64: bool) -> List[Symbol]:
    """
    Decode every nlist entry named by ``symtab``. Offsets in the command are slice relative.
    """
    entry_type = nlist_64 if is64 else nlist
    entry_size = entry_type.size()

    sym_start = slice_offset + symtab.symoff
    require_range(data, sym_start, symtab.nsyms * entry_size, 'symtab', OutOfBoundsReferenceException)
    str_start = slice_offset + symtab.stroff
    require_range(data, str_start, symtab.strsize, 'string table', OutOfBoundsReferenceException)
    str_end = str_start + symtab.strsize

    symbols = []
    for i in range(symtab.nsyms):
        off = sym_start + i * entry_size
        entry = Struct.create_with_bytes(entry_type, data[off:off + entry_size], byte_order)
        symbol = Symbol(i, _read_symbol_name(data, str_start, str_end, entry.n_strx, i), entry)
        log.debug_tm(str(symbol))
        symbols.append(symbol)

    log.info(f'Read {len(symbols)} symbols')
    return symbols


def read_indirect_symbols(data, slice_offset: int, dysymtab: DysymtabInfo, byte_order: str) -> List[int]:
    start = slice_offset + dysymtab.indirectsymoff
    require_range(data, start, dysymtab.nindirectsyms * 4, 'indirect symbol table', OutOfBoundsReferenceException)
    return [int.from_bytes(data[start + i * 4:start + i * 4 + 4], byte_order)
            for i in range(dysymtab.nindirectsyms)]


def _is_indirect_sentinel(value: int) -> bool:
    return value & (INDIRECT_SYMBOL_LOCAL | INDIRECT_SYMBOL_ABS) != 0


def _indirect_symbol_kind(sect: Section) -> SymbolKind:
    return INDIRECT_SECTION_NAMES.get(str(sect.name), INDIRECT_SECTION_KIND_SYMBOLS[sect.kind])


def resolve_symbols(symbols: List[Symbol], indirect_symbols: List[int], sections: List[Section],
                    ptr_size: int = 8) -> List[Symbol]:
    """
    Attach indirect-symbol slots and section names to ``symbols`` (modified in place and returned).

    :param symbols: output of read_symbols, in nlist order
    :param indirect_symbols: output of read_indirect_symbols
    :param sections: every section of the image, in load command order (n_sect numbering)
    :param ptr_size: slot size for pointer sections that leave reserved2 at 0
    """
    for sect in sections:
        if sect.kind not in INDIRECT_SECTION_KINDS:
            continue
        entry_size = sect.reserved2 if sect.reserved2 else ptr_size
        count = sect.size // entry_size
        for i in range(count):
            table_index = sect.reserved1 + i
            if table_index >= len(indirect_symbols):
                log.warn(f'{sect.segment_name},{sect.name} slot {i} is past the indirect symbol table')
                break
            symbol_index = indirect_symbols[table_index]
            if _is_indirect_sentinel(symbol_index):
                continue
            if symbol_index >= len(symbols):
                log.warn(f'Indirect entry {table_index} references missing symbol {symbol_index}')
                continue
            symbol = symbols[symbol_index]
            symbol.indirect_address = sect.vm_address + i * entry_size
            symbol.indirect_section = str(sect.name)
            symbol.indirect_segment = str(sect.segment_name)
            if symbol.kind == SymbolKind.UNDEFINED and symbol.external:
                symbol.kind = _indirect_symbol_kind(sect)

    # n_sect is 1 based across every section of the image
    section_table = {i + 1: sect for i, sect in enumerate(sections)}
    for symbol in symbols:
        sect = section_table.get(symbol.n_sect)
        if sect is not None:
            symbol.segment_name = str(sect.segment_name)
            symbol.section_name = str(sect.name)

    return symbols


def sort_symbols(symbols: List[Symbol]) -> List[Symbol]:
    """Report order: by address, then name. Nameless symbols sort before named ones at the same address."""
    return sorted(symbols, key=lambda s: (s.address, s.name or ''))


class SymbolTable:
    """
    The resolved symbols of one image, with lookups by name and address.
    """

    def __init__(self, symbols: List[Symbol]):
        self.table = symbols
        self.names = {}
        self.addresses = {}
        for symbol in symbols:
            if symbol.name is None or symbol.debug:
                continue
            self.names.setdefault(symbol.name, symbol)
            if symbol.kind == SymbolKind.SECTION or symbol.indirect_address is not None:
                self.addresses.setdefault(symbol.address, symbol)

    @property
    def imports(self) -> List[Symbol]:
        return [s for s in self.table if s.external and not s.debug
                and s.kind in (SymbolKind.UNDEFINED, SymbolKind.LAZY, SymbolKind.STUB, SymbolKind.GOT)]

    @property
    def exports(self) -> List[Symbol]:
        return [s for s in self.table if s.external and not s.debug and s.kind == SymbolKind.SECTION]

    def __len__(self):
        return len(self.table)

    def __iter__(self):
        return iter(self.table)

    def serialize(self):
        return [symbol.serialize() for symbol in self.table]
