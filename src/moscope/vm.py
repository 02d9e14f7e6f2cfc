#
#  moscope | moscope
#  vm.py
#
#  Virtual memory image of a slice: segment file contents placed at their vm addresses, over a zero
#    background.
#
#  The image is kept as a list of mapped chunks rather than one flat buffer, so segments like a 4GB
#    __PAGEZERO cost nothing. Reads assemble the requested range on demand.
#
#  This file is part of moscope. moscope is free software that
#  is made available under the MIT license. Consult the
#  file "LICENSE" that is distributed together with this file
#  for the exact licensing terms.
#
#  Copyright (c) moscope authors 2025.
#

from typing import List, Optional, Tuple

from moscope.segment import Section, Segment
from moscope.util import log, opts


class VMImage:
    """
    :ivar base_address: lowest vm address of any segment with a nonzero vmsize (0 if there are none)
    :ivar size: span from base_address to the highest segment end
    :ivar chunks: (image offset, bytes) pairs in segment order; later chunks win where they overlap
    """

    def __init__(self, base_address: int = 0, size: int = 0):
        self.base_address = base_address
        self.size = size
        self.chunks: List[Tuple[int, bytes]] = []

    def map(self, vm_address: int, data: bytes):
        self.chunks.append((vm_address - self.base_address, data))

    def read(self, vm_address: int, size: int) -> Optional[bytes]:
        """
        Read ``size`` bytes at ``vm_address``.

        :return: the bytes, zero filled where nothing is mapped, or None when the range isn't fully
            inside the image or exceeds opts.MAX_VM_READ
        """
        start = vm_address - self.base_address
        end = start + size
        # an address below the base is rejected rather than clamped to offset 0
        if size <= 0 or start < 0 or end > self.size:
            return None
        if size > opts.MAX_VM_READ:
            log.warn(f'Refusing to read {size} bytes at {hex(vm_address)} from the vm image')
            return None

        buf = bytearray(size)
        for chunk_start, chunk in self.chunks:
            chunk_end = chunk_start + len(chunk)
            lo = max(start, chunk_start)
            hi = min(end, chunk_end)
            if lo < hi:
                buf[lo - start:hi - start] = chunk[lo - chunk_start:hi - chunk_start]
        return bytes(buf)

    def read_section(self, sect: Section) -> Optional[bytes]:
        return self.read(sect.vm_address, sect.size)

    def serialize(self):
        return {'base_address': self.base_address, 'size': self.size, 'mapped_chunks': len(self.chunks)}


def build_vm_image(segments: List[Segment], data, slice_offset: int = 0) -> VMImage:
    """
    Place each segment's file bytes at its vm address.

    Segments whose file range falls outside ``data`` are left unmapped (reads over them see zeros).
    """
    mapped = [seg for seg in segments if seg.vm_size > 0]
    if not mapped:
        return VMImage()

    base = min(seg.vm_address for seg in mapped)
    top = max(seg.vm_address + seg.vm_size for seg in mapped)
    image = VMImage(base, top - base)

    for seg in segments:
        if seg.file_size == 0:
            continue
        start = slice_offset + seg.file_offset
        end = start + seg.file_size
        if end > len(data):
            log.warn(f'{seg} file range {hex(start)}-{hex(end)} is beyond end of file, not mapped')
            continue
        image.map(seg.vm_address, bytes(data[start:end]))

    log.info(f'VM image at {hex(base)}, {hex(image.size)} bytes, {len(image.chunks)} mapped segment(s)')
    return image


def read_section(image: VMImage, sect: Section) -> Optional[bytes]:
    return image.read_section(sect)
