#
#  moscope | tests
#  test_vm_strings.py
#
#  This file is part of moscope. moscope is free software that
#  is made available under the MIT license. Consult the
#  file "LICENSE" that is distributed together with this file
#  for the exact licensing terms.
#
#  Copyright (c) moscope authors 2025.
#
import os
import sys
import unittest

scriptdir = os.path.dirname(os.path.realpath(__file__))
sys.path.insert(0, f'{scriptdir}/../src')
sys.path.insert(0, scriptdir)

from machobuilder import MachOBuilder
from moscope_macho import *
from moscope.exceptions import PatternException
from moscope.image import MachOImageLoader
from moscope.segment import Section
from moscope.strings import *
from moscope.util import log, LogLevel, opts
from moscope.vm import VMImage, build_vm_image, read_section

log.LOG_LEVEL = LogLevel.NONE

CSTRINGS = b'hello\x00world!\x00\x00\x1b[0m\x00ab\x00'


def cstring_binary():
    builder = MachOBuilder()
    builder.add_segment('__PAGEZERO', 0, 0x100000000, maxprot=0, initprot=0)
    builder.add_segment('__TEXT', 0x100000000, 0x4000, 0, 0x4000, sections=[
        builder.section('__TEXT', '__text', 0x100000f00, 0x10, 0xf00,
                        flags=SectionAttributes.S_ATTR_PURE_INSTRUCTIONS),
        builder.section('__TEXT', '__cstring', 0x100001000, len(CSTRINGS), 0x1000,
                        flags=SectionType.S_CSTRING_LITERALS),
        builder.section('__TEXT', '__oslogstring', 0x100001100, 0x10, 0x1100, flags=SectionType.S_CSTRING_LITERALS),
    ])
    builder.add_blob(0x1000, CSTRINGS)
    builder.add_blob(0x1100, b'oslog %d\x00\x00\x00\x00\x00\x00\x00\x00')
    builder.add_blob(0x3ff0, b'\xcc' * 0x10)
    return builder.build()


def make_section(segname, sectname, addr, size, flags=0):
    return Section(Struct.create_with_values(section_64, [sectname.encode(), segname.encode(), addr, size, 0, 0, 0,
                                                          0, flags, 0, 0, 0]))


class VMImageTestCase(unittest.TestCase):
    def setUp(self):
        self.image = MachOImageLoader.load(cstring_binary())

    def test_layout(self):
        vm = self.image.vm
        self.assertEqual(vm.base_address, 0)
        self.assertEqual(vm.size, 0x100004000)
        # __PAGEZERO has no file contents
        self.assertEqual(len(vm.chunks), 1)

    def test_read_section(self):
        sect = self.image.segment('__TEXT').section('__cstring')
        self.assertEqual(read_section(self.image.vm, sect), CSTRINGS)
        self.assertEqual(self.image.vm.read(0x100003ff0, 0x10), b'\xcc' * 0x10)

    def test_pagezero_reads_as_zeros(self):
        self.assertEqual(self.image.vm.read(0x1000, 8), b'\x00' * 8)

    def test_read_across_chunk_boundary(self):
        self.assertEqual(self.image.vm.read(0xfffffffc, 8), b'\x00' * 4 + b'\xcf\xfa\xed\xfe')

    def test_outside_image(self):
        vm = self.image.vm
        self.assertIsNone(vm.read(0x100004000, 1))
        self.assertIsNone(vm.read(0x100003fff, 2))
        self.assertIsNone(vm.read(0x100001000, 0))
        self.assertIsNone(read_section(vm, make_section('__DATA', '__data', 0x200000000, 0x10)))

    def test_section_below_base(self):
        vm = VMImage(0x1000, 0x100)
        vm.map(0x1000, b'\xaa' * 0x100)
        self.assertIsNone(read_section(vm, make_section('__TEXT', '__text', 0x800, 0x10)))
        self.assertIsNone(vm.read(0xfff, 2))
        self.assertEqual(vm.read(0x1000, 2), b'\xaa\xaa')

    def test_read_limit(self):
        saved = opts.MAX_VM_READ
        opts.MAX_VM_READ = 0x100
        try:
            self.assertIsNone(self.image.vm.read(0x100000000, 0x101))
            self.assertIsNotNone(self.image.vm.read(0x100000000, 0x100))
        finally:
            opts.MAX_VM_READ = saved

    def test_empty_image(self):
        vm = VMImage()
        self.assertIsNone(vm.read(0, 1))
        self.assertEqual(vm.serialize()['size'], 0)


class BuildVMImageTestCase(unittest.TestCase):
    def test_segment_past_eof_is_unmapped(self):
        builder = MachOBuilder()
        builder.add_segment('__TEXT', 0x1000, 0x1000, 0, 0x1000)
        builder.add_segment('__DATA', 0x2000, 0x1000, 0x8000, 0x1000)
        builder.add_blob(0x1000, b'\x00' * 0x10)
        data = builder.build()

        image = MachOImageLoader.load(data)
        vm = build_vm_image(image.segments, data)
        self.assertEqual(vm.base_address, 0x1000)
        self.assertEqual(vm.size, 0x2000)
        self.assertEqual(len(vm.chunks), 1)
        self.assertEqual(vm.read(0x2000, 4), b'\x00' * 4)

    def test_later_segments_win(self):
        builder = MachOBuilder()
        builder.add_segment('__A', 0x1000, 0x20, 0x1000, 0x20)
        builder.add_segment('__B', 0x1010, 0x20, 0x1100, 0x20)
        builder.add_blob(0x1000, b'\x11' * 0x20)
        builder.add_blob(0x1100, b'\x22' * 0x20)
        image = MachOImageLoader.load(builder.build())
        self.assertEqual(image.vm.read(0x1000, 0x30), b'\x11' * 0x10 + b'\x22' * 0x20)

    def test_no_segments(self):
        vm = build_vm_image([], b'')
        self.assertEqual((vm.base_address, vm.size), (0, 0))


class ExtractStringsTestCase(unittest.TestCase):
    def test_empty_runs_dropped(self):
        self.assertEqual(extract_strings(b'abc\x00\x00de\x00', 2), ['abc', 'de'])

    def test_min_len(self):
        self.assertEqual(extract_strings(b'abc\x00\x00de\x00', 3), ['abc'])
        self.assertEqual(extract_strings(b'a\x00', 0), ['a'])

    def test_trailing_run_without_nul(self):
        self.assertEqual(extract_strings(b'first\x00last', 1), ['first', 'last'])

    def test_invalid_utf8_skipped(self):
        self.assertEqual(extract_strings(b'ok\xff\xfe\x00good\x00', 2), ['good'])

    def test_multibyte_counts_characters(self):
        self.assertEqual(extract_strings('héé'.encode('utf-8') + b'\x00', 4), [])
        self.assertEqual(extract_strings('héé'.encode('utf-8') + b'\x00', 3), ['héé'])

    def test_control_chars_escaped(self):
        self.assertEqual(extract_strings(b'line\n\ttab\x00\x1b[31mred\x00', 1), ['line\\n\\ttab', '\\x1b[31mred'])
        self.assertEqual(escape_control_chars('a\rb\x7f'), 'a\\rb\\x7f')

    def test_filtered(self):
        data = b'/usr/lib/libz.dylib\x00hello\x00a\x00@rpath/Foo\x00'
        self.assertEqual(extract_filtered_strings(data, r'^[/@]'), ['/usr/lib/libz.dylib', '@rpath/Foo'])
        self.assertEqual(extract_filtered_strings(data, 'a'), ['a', '@rpath/Foo'])
        self.assertEqual(extract_filtered_strings(data, 'nothing'), [])

    def test_bad_pattern(self):
        self.assertRaises(PatternException, extract_filtered_strings, b'abc\x00', '(')
        self.assertRaises(PatternException, compile_pattern, '[a-')


class ImageStringsTestCase(unittest.TestCase):
    def setUp(self):
        self.image = MachOImageLoader.load(cstring_binary())

    def test_default_min_length(self):
        found = self.image.strings()
        self.assertEqual([str(s) for s in found], ['hello', 'world!', '\\x1b[0m', 'oslog %d'])
        self.assertEqual(found[0].section_name, '__cstring')
        self.assertEqual(found[-1].serialize(), {'value': 'oslog %d', 'segment_name': '__TEXT',
                                                 'section_name': '__oslogstring'})

    def test_section_filter(self):
        found = image_strings(self.image, min_len=2, sections=['__cstring'])
        self.assertEqual([s.value for s in found], ['hello', 'world!', '\\x1b[0m', 'ab'])

    def test_pattern(self):
        found = self.image.strings(pattern='o')
        self.assertEqual([s.value for s in found], ['hello', 'world!', 'oslog %d'])


if __name__ == '__main__':
    unittest.main()
