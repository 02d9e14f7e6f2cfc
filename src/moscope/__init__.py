#
#  moscope | moscope
#  __init__.py
#
#  This file is part of moscope. moscope is free software that
#  is made available under the MIT license. Consult the
#  file "LICENSE" that is distributed together with this file
#  for the exact licensing terms.
#
#  Copyright (c) moscope authors 2025.
#

from moscope.moscope import load_macho_file, load_image, load_images, image_json, SliceResult

from moscope.image import Image, MachOImageLoader
from moscope.macho import (MachOFile, ContainerKind, ArchSlice, MachHeader, LoadCommand, classify_container,
                           read_fat_header, read_fat_archs, arch_slice, read_thin_header, read_load_commands)
from moscope.segment import Segment, Section, SegmentName, SectionKind, classify_section, read_segment
from moscope.dylib import LinkedImage, RPath, DylibKind, parse_dylib, parse_rpath
from moscope.symtab import (Symbol, SymbolKind, SymbolTable, read_symbols, read_indirect_symbols,
                            resolve_symbols, sort_symbols)
from moscope.vm import VMImage, build_vm_image, read_section
from moscope.strings import extract_strings, extract_filtered_strings, image_strings, ParsedString
from moscope.exceptions import *
from moscope.util import MOSCOPE_VERSION, ignore, opts, log, LogLevel
