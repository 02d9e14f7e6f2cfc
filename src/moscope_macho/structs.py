#
#  moscope | moscope_macho
#  structs.py
#
#  On-disk record layouts for the fat table, the mach header, and the load commands moscope decodes.
#    The __init__ defs only exist so IDEs can autocomplete the attributes.
#
#  This file is part of moscope. moscope is free software that
#  is made available under the MIT license. Consult the
#  file "LICENSE" that is distributed together with this file
#  for the exact licensing terms.
#
#  Copyright (c) moscope authors 2025.
#

from libmoscope.structs import *


class fat_header(Struct):
    """
    First 8 Bytes of a FAT MachO File. Always stored big endian on disk when written by Apple tools.

    Attributes:
        self.magic: FAT MachO Magic

        self.nfat_arch: Number of Fat Arch entries after these bytes
    """
    FIELDS = {
        'magic': uint32_t,
        'nfat_arch': uint32_t
    }

    def __init__(self, byte_order="big"):
        super().__init__(byte_order=byte_order)
        self.magic = 0
        self.nfat_arch = 0


class fat_arch(Struct):
    FIELDS = {
        'cpu_type': int32_t,
        'cpu_subtype': int32_t,
        'offset': uint32_t,
        'size': uint32_t,
        'align': uint32_t
    }

    def __init__(self, byte_order="big"):
        super().__init__(byte_order=byte_order)
        self.cpu_type = 0
        self.cpu_subtype = 0
        self.offset = 0
        self.size = 0
        self.align = 0


class fat_arch_64(Struct):
    FIELDS = {
        'cpu_type': int32_t,
        'cpu_subtype': int32_t,
        'offset': uint64_t,
        'size': uint64_t,
        'align': uint32_t,
        'reserved': uint32_t
    }

    def __init__(self, byte_order="big"):
        super().__init__(byte_order=byte_order)
        self.cpu_type = 0
        self.cpu_subtype = 0
        self.offset = 0
        self.size = 0
        self.align = 0
        self.reserved = 0


class mach_header(Struct):
    FIELDS = {
        'magic': uint32_t,
        'cpu_type': int32_t,
        'cpu_subtype': int32_t,
        'filetype': uint32_t,
        'ncmds': uint32_t,
        'sizeofcmds': uint32_t,
        'flags': uint32_t
    }

    def __init__(self, byte_order="little"):
        super().__init__(byte_order=byte_order)
        self.magic = 0
        self.cpu_type = 0
        self.cpu_subtype = 0
        self.filetype = 0
        self.ncmds = 0
        self.sizeofcmds = 0
        self.flags = 0


class mach_header_64(Struct):
    FIELDS = {
        'magic': uint32_t,
        'cpu_type': int32_t,
        'cpu_subtype': int32_t,
        'filetype': uint32_t,
        'ncmds': uint32_t,
        'sizeofcmds': uint32_t,
        'flags': uint32_t,
        'reserved': uint32_t
    }

    def __init__(self, byte_order="little"):
        super().__init__(byte_order=byte_order)
        self.magic = 0
        self.cpu_type = 0
        self.cpu_subtype = 0
        self.filetype = 0
        self.ncmds = 0
        self.sizeofcmds = 0
        self.flags = 0
        self.reserved = 0


class load_command(Struct):
    FIELDS = {
        'cmd': uint32_t,
        'cmdsize': uint32_t
    }

    def __init__(self, byte_order="little"):
        super().__init__(byte_order=byte_order)
        self.cmd = 0
        self.cmdsize = 0


class segment_command(Struct):
    FIELDS = {
        'cmd': uint32_t,
        'cmdsize': uint32_t,
        'segname': bytes_t[16],
        'vmaddr': uint32_t,
        'vmsize': uint32_t,
        'fileoff': uint32_t,
        'filesize': uint32_t,
        'maxprot': uint32_t,
        'initprot': uint32_t,
        'nsects': uint32_t,
        'flags': uint32_t
    }

    def __init__(self, byte_order="little"):
        super().__init__(byte_order=byte_order)
        self.cmd = 0
        self.cmdsize = 0
        self.segname = b''
        self.vmaddr = 0
        self.vmsize = 0
        self.fileoff = 0
        self.filesize = 0
        self.maxprot = 0
        self.initprot = 0
        self.nsects = 0
        self.flags = 0


class segment_command_64(Struct):
    FIELDS = {
        'cmd': uint32_t,
        'cmdsize': uint32_t,
        'segname': bytes_t[16],
        'vmaddr': uint64_t,
        'vmsize': uint64_t,
        'fileoff': uint64_t,
        'filesize': uint64_t,
        'maxprot': uint32_t,
        'initprot': uint32_t,
        'nsects': uint32_t,
        'flags': uint32_t
    }

    def __init__(self, byte_order="little"):
        super().__init__(byte_order=byte_order)
        self.cmd = 0
        self.cmdsize = 0
        self.segname = b''
        self.vmaddr = 0
        self.vmsize = 0
        self.fileoff = 0
        self.filesize = 0
        self.maxprot = 0
        self.initprot = 0
        self.nsects = 0
        self.flags = 0


class section(Struct):
    FIELDS = {
        'sectname': bytes_t[16],
        'segname': bytes_t[16],
        'addr': uint32_t,
        'size': uint32_t,
        'offset': uint32_t,
        'align': uint32_t,
        'reloff': uint32_t,
        'nreloc': uint32_t,
        'flags': uint32_t,
        'reserved1': uint32_t,
        'reserved2': uint32_t
    }

    def __init__(self, byte_order="little"):
        super().__init__(byte_order=byte_order)
        self.sectname = b''
        self.segname = b''
        self.addr = 0
        self.size = 0
        self.offset = 0
        self.align = 0
        self.reloff = 0
        self.nreloc = 0
        self.flags = 0
        self.reserved1 = 0
        self.reserved2 = 0


class section_64(Struct):
    FIELDS = {
        'sectname': bytes_t[16],
        'segname': bytes_t[16],
        'addr': uint64_t,
        'size': uint64_t,
        'offset': uint32_t,
        'align': uint32_t,
        'reloff': uint32_t,
        'nreloc': uint32_t,
        'flags': uint32_t,
        'reserved1': uint32_t,
        'reserved2': uint32_t,
        'reserved3': uint32_t
    }

    def __init__(self, byte_order="little"):
        super().__init__(byte_order=byte_order)
        self.sectname = b''
        self.segname = b''
        self.addr = 0
        self.size = 0
        self.offset = 0
        self.align = 0
        self.reloff = 0
        self.nreloc = 0
        self.flags = 0
        self.reserved1 = 0
        self.reserved2 = 0
        self.reserved3 = 0


class symtab_command(Struct):
    FIELDS = {
        'cmd': uint32_t,
        'cmdsize': uint32_t,
        'symoff': uint32_t,
        'nsyms': uint32_t,
        'stroff': uint32_t,
        'strsize': uint32_t
    }

    def __init__(self, byte_order="little"):
        super().__init__(byte_order=byte_order)
        self.cmd = 0
        self.cmdsize = 0
        self.symoff = 0
        self.nsyms = 0
        self.stroff = 0
        self.strsize = 0


class dysymtab_command(Struct):
    FIELDS = {
        'cmd': uint32_t,
        'cmdsize': uint32_t,
        'ilocalsym': uint32_t,
        'nlocalsym': uint32_t,
        'iextdefsym': uint32_t,
        'nextdefsym': uint32_t,
        'iundefsym': uint32_t,
        'nundefsym': uint32_t,
        'tocoff': uint32_t,
        'ntoc': uint32_t,
        'modtaboff': uint32_t,
        'nmodtab': uint32_t,
        'extrefsymoff': uint32_t,
        'nextrefsyms': uint32_t,
        'indirectsymoff': uint32_t,
        'nindirectsyms': uint32_t,
        'extreloff': uint32_t,
        'nextrel': uint32_t,
        'locreloff': uint32_t,
        'nlocrel': uint32_t
    }


class dylib_command(Struct):
    FIELDS = {
        'cmd': uint32_t,
        'cmdsize': uint32_t,
        'name': uint32_t,
        'timestamp': uint32_t,
        'current_version': uint32_t,
        'compatibility_version': uint32_t
    }

    def __init__(self, byte_order="little"):
        super().__init__(byte_order=byte_order)
        self.cmd = 0
        self.cmdsize = 0
        self.name = 0
        self.timestamp = 0
        self.current_version = 0
        self.compatibility_version = 0


class rpath_command(Struct):
    FIELDS = {
        'cmd': uint32_t,
        'cmdsize': uint32_t,
        'path': uint32_t
    }

    def __init__(self, byte_order="little"):
        super().__init__(byte_order=byte_order)
        self.cmd = 0
        self.cmdsize = 0
        self.path = 0


class dylinker_command(Struct):
    FIELDS = {
        'cmd': uint32_t,
        'cmdsize': uint32_t,
        'name': uint32_t
    }


class uuid_command(Struct):
    FIELDS = {
        'cmd': uint32_t,
        'cmdsize': uint32_t,
        'uuid': bytes_t[16]
    }


class entry_point_command(Struct):
    FIELDS = {
        'cmd': uint32_t,
        'cmdsize': uint32_t,
        'entryoff': uint64_t,
        'stacksize': uint64_t
    }


class build_version_command(Struct):
    FIELDS = {
        'cmd': uint32_t,
        'cmdsize': uint32_t,
        'platform': uint32_t,
        'minos': uint32_t,
        'sdk': uint32_t,
        'ntools': uint32_t
    }


class version_min_command(Struct):
    FIELDS = {
        'cmd': uint32_t,
        'cmdsize': uint32_t,
        'version': uint32_t,
        'sdk': uint32_t
    }


class nlist(Struct):
    FIELDS = {
        'n_strx': uint32_t,
        'n_type': uint8_t,
        'n_sect': uint8_t,
        'n_desc': uint16_t,
        'n_value': uint32_t
    }

    def __init__(self, byte_order="little"):
        super().__init__(byte_order=byte_order)
        self.n_strx = 0
        self.n_type = 0
        self.n_sect = 0
        self.n_desc = 0
        self.n_value = 0


class nlist_64(Struct):
    FIELDS = {
        'n_strx': uint32_t,
        'n_type': uint8_t,
        'n_sect': uint8_t,
        'n_desc': uint16_t,
        'n_value': uint64_t
    }

    def __init__(self, byte_order="little"):
        super().__init__(byte_order=byte_order)
        self.n_strx = 0
        self.n_type = 0
        self.n_sect = 0
        self.n_desc = 0
        self.n_value = 0
