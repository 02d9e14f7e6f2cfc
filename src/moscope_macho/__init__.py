#
#  moscope | moscope_macho
#  __init__.py
#
#  Mach-O format definitions shared by the analysis engine and by anything that wants to build or inspect
#    records directly.
#
#  This file is part of moscope. moscope is free software that
#  is made available under the MIT license. Consult the
#  file "LICENSE" that is distributed together with this file
#  for the exact licensing terms.
#
#  Copyright (c) moscope authors 2025.
#

from moscope_macho.macho import *
from moscope_macho.structs import *
