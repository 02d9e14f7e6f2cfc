#
#  moscope | tests
#  test_structs_log.py
#
#  Struct layouts, the logger, and the small helpers in moscope.util.
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

from libmoscope.log import print_err
from libmoscope.structs import StructSizeError
from moscope_macho import *
from moscope.exceptions import TruncatedRecordException
from moscope.util import Queue, ignore, log, LogLevel, macho_is_malformed

log.LOG_LEVEL = LogLevel.NONE

error_buffer = ""
out_buffer = ""


def error_remap(msg):
    global error_buffer
    error_buffer += msg + '\n'


def out_remap(msg):
    global out_buffer
    out_buffer += msg + '\n'


def enable_capture(level):
    global error_buffer, out_buffer
    error_buffer = ""
    out_buffer = ""
    log.LOG_LEVEL = level
    log.LOG_ERR = error_remap
    log.LOG_FUNC = out_remap


def disable_capture():
    log.LOG_LEVEL = LogLevel.NONE
    log.LOG_ERR = print_err
    log.LOG_FUNC = print


class StructTestCase(unittest.TestCase):
    def test_sizes(self):
        self.assertEqual(fat_header.size(), 8)
        self.assertEqual(fat_arch.size(), 20)
        self.assertEqual(fat_arch_64.size(), 32)
        self.assertEqual(mach_header.size(), 28)
        self.assertEqual(mach_header_64.size(), 32)
        self.assertEqual(segment_command.size(), 56)
        self.assertEqual(segment_command_64.size(), 72)
        self.assertEqual(section.size(), 68)
        self.assertEqual(section_64.size(), 80)
        self.assertEqual(dylib_command.size(), 24)
        self.assertEqual(symtab_command.size(), 24)
        self.assertEqual(dysymtab_command.size(), 80)
        self.assertEqual(nlist.size(), 12)
        self.assertEqual(nlist_64.size(), 16)

    def test_short_input(self):
        self.assertRaises(StructSizeError, Struct.create_with_bytes, mach_header_64, b'\xcf\xfa\xed\xfe' + b'\x00' * 8)

    def test_byte_order(self):
        raw = bytes.fromhex('cafebabe 00000002')
        big = Struct.create_with_bytes(fat_header, raw, 'big')
        little = Struct.create_with_bytes(fat_header, raw, 'little')
        self.assertEqual((big.magic, big.nfat_arch), (0xcafebabe, 2))
        self.assertEqual((little.magic, little.nfat_arch), (0xbebafeca, 0x02000000))
        self.assertEqual(big.raw, raw)

    def test_signed_fields(self):
        raw = b'\xff\xff\xff\xff' + b'\x00' * 16
        arch = Struct.create_with_bytes(fat_arch, raw, 'big')
        self.assertEqual(arch.cpu_type, -1)
        self.assertEqual(arch.raw, raw)

    def test_reads_only_declared_bytes(self):
        raw = bytes(range(40))
        header = Struct.create_with_bytes(load_command, raw, 'little')
        self.assertEqual(header.cmd, 0x03020100)
        self.assertEqual(header.cmdsize, 0x07060504)

    def test_byte_fields(self):
        cmd = Struct.create_with_values(segment_command_64, [LOAD_COMMAND.SEGMENT_64, 72, b'__TEXT', 0, 0, 0, 0, 5,
                                                             5, 0, 0])
        raw = cmd.raw
        self.assertEqual(len(raw), 72)
        self.assertEqual(raw[8:24], b'__TEXT' + b'\x00' * 10)
        self.assertEqual(Struct.create_with_bytes(segment_command_64, raw).segname, b'__TEXT' + b'\x00' * 10)
        self.assertEqual(cmd.serialize()['segname'], b'__TEXT'.hex())

    def test_equality(self):
        a = Struct.create_with_values(load_command, [1, 8])
        b = Struct.create_with_values(load_command, [1, 8])
        self.assertEqual(a, b)
        self.assertNotEqual(a, Struct.create_with_values(load_command, [1, 16]))
        self.assertIn('cmd=0x1', str(a))

    def test_bare_struct(self):
        self.assertRaises(AssertionError, Struct)


class LogTestCase(unittest.TestCase):
    def tearDown(self):
        disable_capture()

    def test_levels(self):
        enable_capture(LogLevel.WARN)
        log.info('info line')
        log.warn('warn line')
        log.error('error line')
        self.assertEqual(out_buffer, "")
        self.assertIn('WARN', error_buffer)
        self.assertIn('warn line', error_buffer)
        self.assertIn('error line', error_buffer)

    def test_debug_goes_to_log_func(self):
        enable_capture(LogLevel.DEBUG)
        log.debug('debug line')
        log.debug_more('too much')
        self.assertIn('debug line', out_buffer)
        self.assertNotIn('too much', out_buffer)
        self.assertEqual(error_buffer, "")

    def test_none_silences_errors(self):
        enable_capture(LogLevel.NONE)
        log.error('nope')
        self.assertEqual(error_buffer, "")

    def test_caller_in_prefix(self):
        enable_capture(LogLevel.ERROR)
        log.error('where')
        self.assertIn('moscope.test_structs_log', error_buffer)
        self.assertIn('LogTestCase:test_caller_in_prefix()', error_buffer)

    def test_struct_message(self):
        enable_capture(LogLevel.INFO)
        log.info(Struct.create_with_values(load_command, [0x19, 72]))
        self.assertIn('load_command(cmd=0x19, cmdsize=0x48)', out_buffer)


class UtilTestCase(unittest.TestCase):
    def tearDown(self):
        ignore.MALFORMED = False
        disable_capture()

    def test_malformed_raises_by_default(self):
        ex = TruncatedRecordException('short', stage='mach_header', offset=0)
        self.assertRaises(TruncatedRecordException, macho_is_malformed, ex)

    def test_malformed_logged_when_ignored(self):
        enable_capture(LogLevel.ERROR)
        ignore.MALFORMED = True
        macho_is_malformed(TruncatedRecordException('short', stage='mach_header', offset=0x20))
        self.assertIn('[mach_header] short (at 0x20)', error_buffer)

    def test_queue_order(self):
        for multithread in (False, True):
            queue = Queue()
            queue.multithread = multithread
            for i in range(8):
                queue.add(pow, i, 2)
            queue.go()
            self.assertEqual(queue.returns, [i * i for i in range(8)])

    def test_queue_propagates(self):
        queue = Queue()
        queue.multithread = True
        queue.add(int, 'not a number')
        self.assertRaises(ValueError, queue.go)


if __name__ == '__main__':
    unittest.main()
