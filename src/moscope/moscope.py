#
#  moscope | moscope
#  moscope.py
#
#  Outward facing API
#
#  Some of these functions are only one line long, but the point is to standardize an outward facing API that allows
#   internals to be refactored without breaking others' scripts.
#
#  This file is part of moscope. moscope is free software that
#  is made available under the MIT license. Consult the
#  file "LICENSE" that is distributed together with this file
#  for the exact licensing terms.
#
#  Copyright (c) moscope authors 2025.
#

import json
from typing import BinaryIO, List, Optional, Union

from moscope.exceptions import MalformedMachOException
from moscope.image import Image, MachOImageLoader
from moscope.macho import ArchSlice, MachOFile
from moscope.util import Queue, highlight_json, log


class SliceResult:
    """
    Outcome of loading one slice: either ``image`` or ``error`` is set.
    """

    def __init__(self, index: int, arch, image: Optional[Image] = None,
                 error: Optional[MalformedMachOException] = None):
        self.index = index
        self.arch = arch
        self.image = image
        self.error = error

    @property
    def ok(self) -> bool:
        return self.error is None

    def serialize(self):
        return {
            'index': self.index,
            'arch': self.arch.serialize() if self.arch is not None else None,
            'image': self.image.serialize() if self.image is not None else None,
            'error': str(self.error) if self.error is not None else None,
        }


def load_macho_file(fp: Union[BinaryIO, bytes, bytearray]) -> MachOFile:
    """
    This function takes a bare file (opened with 'rb') or raw bytes and loads it as a MachOFile.

    :param fp: BinaryIO object or bytes
    :return: MachOFile with its slices listed
    """
    return MachOFile(fp)


def load_image(fp: Union[BinaryIO, bytes, bytearray, MachOFile], slice_index=0, load_symtab=True) -> Image:
    """
    Take a bare file, bytes, or MachOFile, and load one slice of it.

    :param fp: a bare file, bytes, or MachOFile to load.
    :param slice_index: For Fat files, which slice should be loaded?
    :param load_symtab: Load the symbol table if one exists. This can be disabled for targeted loads, for speed.
    :return: Returns a loaded Image object
    :rtype: Image
    """
    macho_file = fp if isinstance(fp, MachOFile) else load_macho_file(fp)
    return MachOImageLoader.load(macho_file.data, macho_file.slices[slice_index], load_symtab=load_symtab)


def _load_slice(macho_file: MachOFile, index: int, load_symtab: bool) -> SliceResult:
    arch = macho_file.archs[index] if macho_file.archs else None
    try:
        image = MachOImageLoader.load(macho_file.data, macho_file.slices[index], load_symtab=load_symtab)
    except MalformedMachOException as ex:
        log.error(f'Slice {index} failed to load: {ex}')
        return SliceResult(index, arch, error=ex)
    return SliceResult(index, arch, image=image)


def load_images(fp: Union[BinaryIO, bytes, bytearray, MachOFile], load_symtab=True,
                multithread=False) -> List[SliceResult]:
    """
    Load every slice of a file independently. A slice that fails to decode is reported in its SliceResult
        and doesn't stop the others.

    :param fp: a bare file, bytes, or MachOFile
    :param load_symtab: Load symbol tables
    :param multithread: Load slices on a thread pool
    :return: one SliceResult per slice, in fat table order
    """
    macho_file = fp if isinstance(fp, MachOFile) else load_macho_file(fp)

    queue = Queue()
    queue.multithread = multithread
    for index in range(len(macho_file.slices)):
        queue.add(_load_slice, macho_file, index, load_symtab)
    queue.go()
    return queue.returns


def image_json(image: Image, color=False) -> str:
    text = json.dumps(image.serialize(), indent=4)
    return highlight_json(text) if color else text
