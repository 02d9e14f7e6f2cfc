#
#  moscope | moscope_macho
#  macho.py
#
#  Pythonized representations of the Mach-O #defines and enums, plus the lookup helpers that turn raw
#    header values into readable names.
#
#  This file is part of moscope. moscope is free software that
#  is made available under the MIT license. Consult the
#  file "LICENSE" that is distributed together with this file
#  for the exact licensing terms.
#
#  Copyright (c) moscope authors 2025.
#

from enum import IntEnum
from typing import List

MH_MAGIC = 0xFEEDFACE
MH_CIGAM = 0xCEFAEDFE
MH_MAGIC_64 = 0xFEEDFACF
MH_CIGAM_64 = 0xCFFAEDFE
FAT_MAGIC = 0xCAFEBABE
FAT_CIGAM = 0xBEBAFECA
FAT_MAGIC_64 = 0xCAFEBABF
FAT_CIGAM_64 = 0xBFBAFECA

FAT_HEADER_SIZE = 8
FAT_ARCH_SIZE = 20
FAT_ARCH_64_SIZE = 32
MACH_HEADER_SIZE = 28
MACH_HEADER_64_SIZE = 32
LOAD_COMMAND_HEADER_SIZE = 8


class MH_FLAGS(IntEnum):
    NOUNDEFS = 0x1
    INCRLINK = 0x2
    DYLDLINK = 0x4
    BINDATLOAD = 0x8
    PREBOUND = 0x10
    SPLIT_SEGS = 0x20
    LAZY_INIT = 0x40
    TWOLEVEL = 0x80
    FORCE_FLAT = 0x100
    NOMULTIDEFS = 0x200
    NOFIXPREBINDING = 0x400
    PREBINDABLE = 0x800
    ALLMODSBOUND = 0x1000
    SUBSECTIONS_VIA_SYMBOLS = 0x2000
    CANONICAL = 0x4000
    WEAK_DEFINES = 0x8000
    BINDS_TO_WEAK = 0x10000
    ALLOW_STACK_EXECUTION = 0x20000
    ROOT_SAFE = 0x40000
    SETUID_SAFE = 0x80000
    NO_REEXPORTED_DYLIBS = 0x100000
    PIE = 0x200000
    DEAD_STRIPPABLE_DYLIB = 0x400000
    HAS_TLV_DESCRIPTORS = 0x800000
    NO_HEAP_EXECUTION = 0x1000000
    APP_EXTENSION_SAFE = 0x02000000
    NLIST_OUTOFSYNC_WITH_DYLDINFO = 0x04000000
    SIM_SUPPORT = 0x08000000
    DYLIB_IN_CACHE = 0x80000000


class MH_FILETYPE(IntEnum):
    UNK = 0
    OBJECT = 0x1
    EXECUTE = 0x2
    FVMLIB = 0x3
    CORE = 0x4
    PRELOAD = 0x5
    DYLIB = 0x6
    DYLINKER = 0x7
    BUNDLE = 0x8
    DYLIB_STUB = 0x9
    DSYM = 0xA
    KEXT_BUNDLE = 0xB
    FILESET = 0xC


FILETYPE_DESCRIPTIONS = {
    MH_FILETYPE.OBJECT: "Relocatable Object File",
    MH_FILETYPE.EXECUTE: "Demand Paged Executable File",
    MH_FILETYPE.FVMLIB: "Fixed VM Shared Library File",
    MH_FILETYPE.CORE: "Core File",
    MH_FILETYPE.PRELOAD: "Preloaded Executable File",
    MH_FILETYPE.DYLIB: "Dynamically Bound Shared Library",
    MH_FILETYPE.DYLINKER: "Dynamic Link Editor",
    MH_FILETYPE.BUNDLE: "Dynamically Bound Bundle File",
    MH_FILETYPE.DYLIB_STUB: "Shared Library Stub for Static Linking Only",
    MH_FILETYPE.DSYM: "Companion File with Only Debug Sections",
    MH_FILETYPE.KEXT_BUNDLE: "Kernel Extension",
    MH_FILETYPE.FILESET: "Kernel Cache Fileset",
}

LC_REQ_DYLD = 0x80000000


class LOAD_COMMAND(IntEnum):
    SEGMENT = 0x1
    SYMTAB = 0x2
    SYMSEG = 0x3
    THREAD = 0x4
    UNIXTHREAD = 0x5
    LOADFVMLIB = 0x6
    IDFVMLIB = 0x7
    IDENT = 0x8
    FVMFILE = 0x9
    PREPAGE = 0xA
    DYSYMTAB = 0xB
    LOAD_DYLIB = 0xC
    ID_DYLIB = 0xD
    LOAD_DYLINKER = 0xE
    ID_DYLINKER = 0xF
    PREBOUND_DYLIB = 0x10
    ROUTINES = 0x11
    SUB_FRAMEWORK = 0x12
    SUB_UMBRELLA = 0x13
    SUB_CLIENT = 0x14
    SUB_LIBRARY = 0x15
    TWOLEVEL_HINTS = 0x16
    PREBIND_CKSUM = 0x17
    LOAD_WEAK_DYLIB = 0x18 | LC_REQ_DYLD
    SEGMENT_64 = 0x19
    ROUTINES_64 = 0x1a
    UUID = 0x1b
    RPATH = 0x1C | LC_REQ_DYLD
    CODE_SIGNATURE = 0x1D
    SEGMENT_SPLIT_INFO = 0x1E
    REEXPORT_DYLIB = 0x1F | LC_REQ_DYLD
    LAZY_LOAD_DYLIB = 0x20
    ENCRYPTION_INFO = 0x21
    DYLD_INFO = 0x22
    DYLD_INFO_ONLY = 0x22 | LC_REQ_DYLD
    LOAD_UPWARD_DYLIB = 0x23 | LC_REQ_DYLD
    VERSION_MIN_MACOSX = 0x24
    VERSION_MIN_IPHONEOS = 0x25
    FUNCTION_STARTS = 0x26
    DYLD_ENVIRONMENT = 0x27
    MAIN = 0x28 | LC_REQ_DYLD
    DATA_IN_CODE = 0x29
    SOURCE_VERSION = 0x2A
    DYLIB_CODE_SIGN_DRS = 0x2B
    ENCRYPTION_INFO_64 = 0x2C
    LINKER_OPTION = 0x2D
    LINKER_OPTIMIZATION_HINT = 0x2E
    VERSION_MIN_TVOS = 0x2F
    VERSION_MIN_WATCHOS = 0x30
    NOTE = 0x31
    BUILD_VERSION = 0x32
    DYLD_EXPORTS_TRIE = 0x33 | LC_REQ_DYLD
    DYLD_CHAINED_FIXUPS = 0x34 | LC_REQ_DYLD
    FILESET_ENTRY = 0x35 | LC_REQ_DYLD
    ATOM_INFO = 0x36
    FUNCTION_VARIANTS = 0x37
    FUNCTION_VARIANT_FIXED = 0x38
    TARGET_TRIPLE = 0x39


DYLIB_COMMANDS = (
    LOAD_COMMAND.ID_DYLIB,
    LOAD_COMMAND.LOAD_DYLIB,
    LOAD_COMMAND.LOAD_WEAK_DYLIB,
    LOAD_COMMAND.REEXPORT_DYLIB,
    LOAD_COMMAND.LAZY_LOAD_DYLIB,
    LOAD_COMMAND.LOAD_UPWARD_DYLIB,
)


class PlatformType(IntEnum):
    UNKNOWN = 0
    MACOS = 1
    IOS = 2
    TVOS = 3
    WATCHOS = 4
    BRIDGEOS = 5
    MACCATALYST = 6
    IOSSIMULATOR = 7
    TVOSSIMULATOR = 8
    WATCHOSSIMULATOR = 9
    DRIVERKIT = 10
    VISIONOS = 11
    VISIONOSSIMULATOR = 12


VERSION_MIN_COMMANDS = {
    LOAD_COMMAND.VERSION_MIN_MACOSX: PlatformType.MACOS,
    LOAD_COMMAND.VERSION_MIN_IPHONEOS: PlatformType.IOS,
    LOAD_COMMAND.VERSION_MIN_TVOS: PlatformType.TVOS,
    LOAD_COMMAND.VERSION_MIN_WATCHOS: PlatformType.WATCHOS,
}


class S_FLAGS_MASKS(IntEnum):
    SECTION_TYPE = 0x000000ff
    SECTION_ATTRIBUTES = 0xffffff00
    SECTION_ATTRIBUTES_USR = 0xff000000
    SECTION_ATTRIBUTES_SYS = 0x00ffff00


class SectionType(IntEnum):
    S_REGULAR = 0x00
    S_ZEROFILL = 0x01
    S_CSTRING_LITERALS = 0x02
    S_4BYTE_LITERALS = 0x03
    S_8BYTE_LITERALS = 0x04
    S_LITERAL_POINTERS = 0x05
    S_NON_LAZY_SYMBOL_POINTERS = 0x06
    S_LAZY_SYMBOL_POINTERS = 0x07
    # stub size lives in reserved2
    S_SYMBOL_STUBS = 0x08
    S_MOD_INIT_FUNC_POINTERS = 0x09
    S_MOD_TERM_FUNC_POINTERS = 0x0A
    S_COALESCED = 0x0B
    # zerofill that can exceed 4 gigabytes
    S_GB_ZEROFILL = 0x0C
    S_INTERPOSING = 0x0D
    S_16BYTE_LITERALS = 0x0E
    S_DTRACE_DOF = 0x0F
    S_LAZY_DYLIB_SYMBOL_POINTERS = 0x10
    S_THREAD_LOCAL_REGULAR = 0x11
    S_THREAD_LOCAL_ZEROFILL = 0x12
    S_THREAD_LOCAL_VARIABLES = 0x13
    S_THREAD_LOCAL_VARIABLE_POINTERS = 0x14
    S_THREAD_LOCAL_INIT_FUNCTION_POINTERS = 0x15
    S_INIT_FUNC_OFFSETS = 0x16


class SectionAttributes(IntEnum):
    S_ATTR_PURE_INSTRUCTIONS = 0x80000000
    S_ATTR_NO_TOC = 0x40000000
    S_ATTR_STRIP_STATIC_SYMS = 0x20000000
    S_ATTR_NO_DEAD_STRIP = 0x10000000
    S_ATTR_LIVE_SUPPORT = 0x08000000
    S_ATTR_SELF_MODIFYING_CODE = 0x04000000
    S_ATTR_DEBUG = 0x02000000
    S_ATTR_SOME_INSTRUCTIONS = 0x00000400
    S_ATTR_EXT_RELOC = 0x00000200
    S_ATTR_LOC_RELOC = 0x00000100


class VM_PROT(IntEnum):
    READ = 0x1
    WRITE = 0x2
    EXECUTE = 0x4


CPU_ARCH_MASK = 0xff000000
CPU_ARCH_ABI64 = 0x01000000
CPU_ARCH_ABI64_32 = 0x02000000
CPU_SUBTYPE_MASK = 0xff000000
CPU_SUBTYPE_PTRAUTH_ABI = 0x80000000


class CPUType(IntEnum):
    ANY = -1
    X86 = 7
    X86_64 = X86 | CPU_ARCH_ABI64
    MC98000 = 10
    ARM = 12
    ARM64 = ARM | CPU_ARCH_ABI64
    ARM64_32 = ARM | CPU_ARCH_ABI64_32
    SPARC = 14
    POWERPC = 18
    POWERPC64 = POWERPC | CPU_ARCH_ABI64
    RISCV = 24


class CPUSubTypeARM(IntEnum):
    ALL = 0
    V4T = 5
    V6 = 6
    V5TEJ = 7
    XSCALE = 8
    V7 = 9
    V7F = 10
    V7S = 11
    V7K = 12
    V8 = 13
    V6M = 14
    V7M = 15
    V7EM = 16


class CPUSubTypeARM64(IntEnum):
    ALL = 0
    V8 = 1
    ARM64E = 2


# symbol table
N_STAB = 0xe0
N_PEXT = 0x10
N_TYPE = 0x0e
N_EXT = 0x01

N_UNDF = 0x0
N_ABS = 0x2
N_INDR = 0xa
N_PBUD = 0xc
N_SECT = 0xe

NO_SECT = 0
MAX_SECT = 255

INDIRECT_SYMBOL_LOCAL = 0x80000000
INDIRECT_SYMBOL_ABS = 0x40000000


def load_command_name(cmd: int) -> str:
    try:
        return 'LC_' + LOAD_COMMAND(cmd).name
    except ValueError:
        return 'UNKNOWN_LOAD_COMMAND'


def cpu_type_name(cpu_type: int) -> str:
    """Family name of a cpu_type, ignoring the 64-bit ABI bit."""
    base = cpu_type & ~CPU_ARCH_ABI64
    return {
        CPUType.X86: 'x86',
        CPUType.ARM: 'ARM',
        CPUType.POWERPC: 'PowerPC',
        CPUType.RISCV: 'RISC-V',
    }.get(base, 'Unknown')


def cpu_subtype_name(cpu_type: int, cpu_subtype: int) -> str:
    """Readable architecture name for a (cpu_type, cpu_subtype) pair.

    For arm64 the pointer-authentication ABI bit is checked before the capability bits are masked off,
    so 0x80000002 reports as arm64e.
    """
    cpu_subtype &= 0xffffffff
    if cpu_type == CPUType.ARM64:
        if cpu_subtype & CPU_SUBTYPE_PTRAUTH_ABI:
            return 'arm64e'
        subtype = cpu_subtype & ~CPU_SUBTYPE_MASK
        if subtype == CPUSubTypeARM64.V8:
            return 'arm64'
        if subtype == CPUSubTypeARM64.ALL:
            return 'arm64 (generic)'
        return 'ARM64 (unknown subtype)'
    if cpu_type == CPUType.ARM:
        subtype = cpu_subtype & ~CPU_SUBTYPE_MASK
        if subtype == CPUSubTypeARM.V7:
            return 'ARMv7'
        if subtype == CPUSubTypeARM.V8:
            return 'ARMv8'
        return 'ARM (unknown subtype)'
    if cpu_type == CPUType.X86_64:
        return 'x86_64'
    if cpu_type == CPUType.X86:
        return 'x86'
    return 'Unknown'


def filetype_name(file_type: int) -> str:
    try:
        ft = MH_FILETYPE(file_type)
    except ValueError:
        return 'Unknown File Type'
    if ft not in FILETYPE_DESCRIPTIONS:
        return 'Unknown File Type'
    return f'{FILETYPE_DESCRIPTIONS[ft]} [MH_{ft.name}]'


def header_flag_names(flags: int) -> List[str]:
    return [f'MH_{flag.name}' for flag in MH_FLAGS if flags & flag]


def section_type_name(flags: int) -> str:
    try:
        return SectionType(flags & S_FLAGS_MASKS.SECTION_TYPE).name
    except ValueError:
        return f'S_UNKNOWN({hex(flags & S_FLAGS_MASKS.SECTION_TYPE)})'


def section_attribute_names(flags: int) -> List[str]:
    return [attr.name for attr in SectionAttributes if flags & attr]


def protection_string(prot: int) -> str:
    """rwx style rendering of a VM protection mask"""
    return ''.join([
        'r' if prot & VM_PROT.READ else '-',
        'w' if prot & VM_PROT.WRITE else '-',
        'x' if prot & VM_PROT.EXECUTE else '-',
    ])


def version_string(version: int) -> str:
    """X.Y.Z from the nibble-packed xxxx.yy.zz form used by dylib and build-version commands"""
    return f'{version >> 16}.{(version >> 8) & 0xff}.{version & 0xff}'
