#
#  moscope | tests
#  test_macho.py
#
#  Container classification, fat tables, thin headers, and the load command walker.
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
from io import BytesIO

scriptdir = os.path.dirname(os.path.realpath(__file__))
sys.path.insert(0, f'{scriptdir}/../src')
sys.path.insert(0, scriptdir)

from machobuilder import MachOBuilder, build_fat
from moscope.macho import *
from moscope.util import log, LogLevel

log.LOG_LEVEL = LogLevel.NONE


class ClassifyContainerTestCase(unittest.TestCase):
    def test_all_magics(self):
        cases = {
            b'\xfe\xed\xfa\xce': ContainerKind.THIN_32_BE,
            b'\xce\xfa\xed\xfe': ContainerKind.THIN_32_LE,
            b'\xfe\xed\xfa\xcf': ContainerKind.THIN_64_BE,
            b'\xcf\xfa\xed\xfe': ContainerKind.THIN_64_LE,
            b'\xca\xfe\xba\xbe': ContainerKind.FAT_32_BE,
            b'\xbe\xba\xfe\xca': ContainerKind.FAT_32_LE,
            b'\xca\xfe\xba\xbf': ContainerKind.FAT_64_BE,
            b'\xbf\xba\xfe\xca': ContainerKind.FAT_64_LE,
        }
        for magic, kind in cases.items():
            self.assertEqual(classify_container(magic + b'\x00' * 4), kind)

    def test_kind_properties(self):
        self.assertTrue(ContainerKind.FAT_64_LE.is_fat)
        self.assertTrue(ContainerKind.FAT_64_LE.is_64)
        self.assertEqual(ContainerKind.FAT_64_LE.byte_order, 'little')
        self.assertFalse(ContainerKind.THIN_32_BE.is_fat)
        self.assertFalse(ContainerKind.THIN_32_BE.is_64)
        self.assertEqual(ContainerKind.THIN_32_BE.byte_order, 'big')

    def test_bad_magic(self):
        with self.assertRaises(UnsupportedFiletypeException) as ctx:
            classify_container(b'\x7fELF\x02\x01\x01\x00')
        self.assertEqual(ctx.exception.stage, 'magic')
        self.assertEqual(ctx.exception.offset, 0)

    def test_too_short(self):
        self.assertRaises(UnsupportedFiletypeException, classify_container, b'\xcf\xfa')
        self.assertRaises(UnsupportedFiletypeException, classify_container, b'')


class FatTestCase(unittest.TestCase):
    def test_single_arch_literal(self):
        data = bytes.fromhex('cafebabe 00000001 0100000c 00000000 00001000 00002000 0000000e')
        header = read_fat_header(data)
        self.assertEqual(header.kind, ContainerKind.FAT_32_BE)
        self.assertEqual(header.nfat_arch, 1)

        archs = read_fat_archs(data, header)
        self.assertEqual(len(archs), 1)
        arch = archs[0]
        self.assertIsInstance(arch, fat_arch)
        self.assertEqual(arch.cpu_type, 0x0100000C)
        self.assertEqual(arch.cpu_subtype, 0)
        self.assertEqual(arch.offset, 0x1000)
        self.assertEqual(arch.size, 0x2000)
        self.assertEqual(arch.align, 14)
        self.assertEqual(arch_slice(arch), ArchSlice(0x1000, 0x2000))

    def test_fat_64_arch(self):
        data = bytes.fromhex('cafebabf 00000001 0100000c 80000002 0000000000004000 0000000000000100 0000000e 00000000')
        archs = read_fat_archs(data, read_fat_header(data))
        self.assertIsInstance(archs[0], fat_arch_64)
        self.assertEqual(archs[0].offset, 0x4000)
        self.assertEqual(archs[0].size, 0x100)
        self.assertEqual(archs[0].cpu_subtype, -0x7ffffffe)
        self.assertEqual(cpu_subtype_name(archs[0].cpu_type, archs[0].cpu_subtype), 'arm64e')

    def test_little_endian_fat(self):
        data = bytes.fromhex('bebafeca 01000000 0c000001 00000000 00100000 00200000 0e000000')
        header = read_fat_header(data)
        self.assertEqual(header.kind, ContainerKind.FAT_32_LE)
        arch = read_fat_archs(data, header)[0]
        self.assertEqual(arch.cpu_type, CPUType.ARM64)
        self.assertEqual(arch.offset, 0x1000)

    def test_truncated_table(self):
        data = bytes.fromhex('cafebabe 00000002 0100000c 00000000 00001000 00002000 0000000e')
        header = read_fat_header(data)
        with self.assertRaises(TruncatedRecordException) as ctx:
            read_fat_archs(data, header)
        self.assertEqual(ctx.exception.offset, 8 + 20)
        self.assertIn('fat_arch[1]', str(ctx.exception))

    def test_huge_count_fails_at_eof(self):
        data = bytes.fromhex('cafebabe ffffffff') + b'\x00' * 40
        self.assertRaises(TruncatedRecordException, read_fat_archs, data, read_fat_header(data))

    def test_header_too_short(self):
        self.assertRaises(TruncatedRecordException, read_fat_header, bytes.fromhex('cafebabe 0000'))

    def test_thin_is_not_fat(self):
        self.assertRaises(UnsupportedFiletypeException, read_fat_header, MachOBuilder().build())


class ThinHeaderTestCase(unittest.TestCase):
    def test_64_little(self):
        data = MachOBuilder(cpu_type=CPUType.X86_64, cpu_subtype=3, flags=MH_FLAGS.PIE | MH_FLAGS.DYLDLINK).build()
        header = read_thin_header(data, ArchSlice(0, None))
        self.assertTrue(header.is64)
        self.assertEqual(header.byte_order, 'little')
        self.assertEqual(header.cpu_type, CPUType.X86_64)
        self.assertEqual(header.cpu_type_name, 'x86')
        self.assertEqual(header.cpu_subtype_name, 'x86_64')
        self.assertEqual(header.file_type, MH_FILETYPE.EXECUTE)
        self.assertEqual(header.file_type_name, 'Demand Paged Executable File [MH_EXECUTE]')
        self.assertEqual(header.flag_names, ['MH_DYLDLINK', 'MH_PIE'])
        self.assertEqual(header.header_size, 32)
        self.assertEqual(header.reserved, 0)

    def test_32_big(self):
        data = MachOBuilder(is64=False, byte_order='big', cpu_type=CPUType.POWERPC).build()
        header = read_thin_header(data, ArchSlice(0, None))
        self.assertFalse(header.is64)
        self.assertEqual(header.kind, ContainerKind.THIN_32_BE)
        self.assertEqual(header.cpu_type_name, 'PowerPC')
        self.assertEqual(header.header_size, 28)
        self.assertIsNone(header.reserved)

    def test_header_inside_fat_slice(self):
        thin = MachOBuilder(filetype=MH_FILETYPE.DYLIB).build()
        data = build_fat([(CPUType.ARM64, 0, thin)])
        archs = read_fat_archs(data, read_fat_header(data))
        header = read_thin_header(data, arch_slice(archs[0]))
        self.assertEqual(header.offset, 0x1000)
        self.assertEqual(header.file_type, MH_FILETYPE.DYLIB)

    def test_header_beyond_eof(self):
        data = MachOBuilder().build()[:20]
        self.assertRaises(TruncatedRecordException, read_thin_header, data, ArchSlice(0, None))

    def test_slice_past_eof(self):
        data = MachOBuilder().build()
        self.assertRaises(UnsupportedFiletypeException, read_thin_header, data, ArchSlice(0x10000, 0x100))

    def test_nested_fat_rejected(self):
        data = bytes.fromhex('cafebabe 00000000')
        self.assertRaises(UnsupportedFiletypeException, read_thin_header, data, ArchSlice(0, None))


class LoadCommandWalkerTestCase(unittest.TestCase):
    def _walk(self, builder):
        data = builder.build()
        header = read_thin_header(data, ArchSlice(0, None))
        return read_load_commands(data, header.header_size, header.ncmds, header.word_size, header.byte_order,
                                  header.sizeofcmds)

    def test_sizes_sum_to_sizeofcmds(self):
        builder = MachOBuilder()
        builder.add_raw_command(LOAD_COMMAND.UUID, b'\x11' * 16)
        builder.add_raw_command(0x7777, b'\x00' * 8)
        builder.add_rpath('@executable_path/../Frameworks')
        commands = self._walk(builder)
        self.assertEqual(len(commands), 3)
        self.assertEqual(sum(c.cmdsize for c in commands), len(b''.join(builder.commands)))
        self.assertEqual(commands[0].offset, 32)
        self.assertEqual(commands[1].offset, 32 + commands[0].cmdsize)
        self.assertEqual(commands[0].name, 'LC_UUID')
        self.assertEqual(commands[1].name, 'UNKNOWN_LOAD_COMMAND')
        self.assertEqual(commands[2].name, 'LC_RPATH')

    def test_cmdsize_below_header(self):
        builder = MachOBuilder()
        builder.add_raw_command(LOAD_COMMAND.UUID, b'\x00' * 8, cmdsize=4)
        builder.sizeofcmds_override = 4
        self.assertRaises(MalformedMachOException, self._walk, builder)

    def test_misaligned_64(self):
        builder = MachOBuilder()
        builder.add_raw_command(LOAD_COMMAND.UUID, b'\x00' * 4, cmdsize=12)
        with self.assertRaises(MisalignedRecordException) as ctx:
            self._walk(builder)
        self.assertEqual(ctx.exception.offset, 32)

    def test_32_bit_allows_word_alignment(self):
        builder = MachOBuilder(is64=False)
        builder.add_raw_command(LOAD_COMMAND.UUID, b'\x00' * 4, cmdsize=12)
        self.assertEqual(self._walk(builder)[0].cmdsize, 12)

    def test_cmdsize_past_eof(self):
        builder = MachOBuilder()
        builder.add_raw_command(LOAD_COMMAND.UUID, b'\x00' * 8, cmdsize=0x1000)
        builder.sizeofcmds_override = 0x1000
        data = builder.build()[:64]
        header = read_thin_header(data, ArchSlice(0, None))
        self.assertRaises(OutOfBoundsReferenceException, read_load_commands, data, header.header_size, header.ncmds,
                          header.word_size, header.byte_order)

    def test_ncmds_past_eof(self):
        builder = MachOBuilder()
        builder.add_raw_command(LOAD_COMMAND.UUID, b'\x00' * 16)
        builder.ncmds_override = 1000
        self.assertRaises(TruncatedRecordException, self._walk, builder)

    def test_sizeofcmds_mismatch(self):
        builder = MachOBuilder()
        builder.add_raw_command(LOAD_COMMAND.UUID, b'\x00' * 16)
        builder.sizeofcmds_override = 8
        self.assertRaises(MalformedMachOException, self._walk, builder)

    def test_word_size_validated(self):
        self.assertRaises(ValueError, read_load_commands, b'', 0, 0, 16, 'little')

    def test_big_endian_walk(self):
        builder = MachOBuilder(byte_order='big')
        builder.add_raw_command(LOAD_COMMAND.UUID, b'\x00' * 16)
        commands = self._walk(builder)
        self.assertEqual(commands[0].cmd, LOAD_COMMAND.UUID)
        self.assertEqual(commands[0].cmdsize, 24)


class NameTableTestCase(unittest.TestCase):
    def test_cpu_subtypes(self):
        self.assertEqual(cpu_subtype_name(CPUType.ARM64, 0x80000002), 'arm64e')
        self.assertEqual(cpu_subtype_name(CPUType.ARM64, -0x7ffffffe), 'arm64e')
        self.assertEqual(cpu_subtype_name(CPUType.ARM64, 1), 'arm64')
        self.assertEqual(cpu_subtype_name(CPUType.ARM64, 0), 'arm64 (generic)')
        self.assertEqual(cpu_subtype_name(CPUType.ARM64, 2), 'ARM64 (unknown subtype)')
        self.assertEqual(cpu_subtype_name(CPUType.ARM, 9), 'ARMv7')
        self.assertEqual(cpu_subtype_name(CPUType.ARM, 13), 'ARMv8')
        self.assertEqual(cpu_subtype_name(CPUType.X86, 3), 'x86')
        self.assertEqual(cpu_subtype_name(0x1234, 0), 'Unknown')

    def test_cpu_types(self):
        self.assertEqual(cpu_type_name(CPUType.ARM64), 'ARM')
        self.assertEqual(cpu_type_name(CPUType.RISCV), 'RISC-V')
        self.assertEqual(cpu_type_name(99), 'Unknown')

    def test_load_command_names(self):
        self.assertEqual(load_command_name(0x80000028), 'LC_MAIN')
        self.assertEqual(load_command_name(0x39), 'LC_TARGET_TRIPLE')
        self.assertEqual(load_command_name(0xdead), 'UNKNOWN_LOAD_COMMAND')

    def test_filetype(self):
        self.assertEqual(filetype_name(0xC), 'Kernel Cache Fileset [MH_FILESET]')
        self.assertEqual(filetype_name(0x99), 'Unknown File Type')


class MachOFileTestCase(unittest.TestCase):
    def test_thin_from_file_object(self):
        macho_file = MachOFile(BytesIO(MachOBuilder().build()))
        self.assertEqual(macho_file.kind, ContainerKind.THIN_64_LE)
        self.assertEqual(macho_file.slices, [ArchSlice(0, None)])
        self.assertEqual(macho_file.archs, [])

    def test_fat(self):
        data = build_fat([(CPUType.X86_64, 3, MachOBuilder(cpu_type=CPUType.X86_64).build()),
                          (CPUType.ARM64, 0, MachOBuilder().build())])
        macho_file = MachOFile(data)
        self.assertEqual(macho_file.kind, ContainerKind.FAT_32_BE)
        self.assertEqual(len(macho_file.slices), 2)
        self.assertEqual(macho_file.slices[0].offset, 0x1000)
        self.assertEqual(macho_file.serialize()['fat_header']['nfat_arch'], 2)


if __name__ == '__main__':
    unittest.main()
