#
#  moscope | libmoscope
#  structs.py
#
#  Declarative fixed-layout records. Subclasses list their fields in FIELDS and get endian-aware,
#    length-checked decoding plus re-encoding through the .raw property.
#
#  This file is part of moscope. moscope is free software that
#  is made available under the MIT license. Consult the
#  file "LICENSE" that is distributed together with this file
#  for the exact licensing terms.
#
#  Copyright (c) moscope authors 2025.
#

# Field sizes carry their type in the upper bits so size calculation stays a mask.
type_mask = 0xffff0000
size_mask = 0xffff

type_uint = 0
type_sint = 0x10000
type_bytes = 0x30000

uint8_t = 1
uint16_t = 2
uint32_t = 4
uint64_t = 8

int8_t = type_sint | 1
int16_t = type_sint | 2
int32_t = type_sint | 4
int64_t = type_sint | 8

# bytes_t[16] is a 16 byte opaque field, e.g. a segment name
bytes_t = [type_bytes | i for i in range(65)]


class StructSizeError(ValueError):
    """Raised when a record is decoded from fewer bytes than its layout needs."""


def _uint_to_int(uint, bits):
    """
    Assume an int was read from binary as an unsigned int,

    decode it as a two's compliment signed integer
    """
    if (uint & (1 << (bits - 1))) != 0:
        uint = uint - (1 << bits)
    return uint


class Struct:
    """
    Custom namedtuple-esque Struct representation. Can be unpacked from bytes or manually created with existing
        field values

    Subclasses declare ``FIELDS``, an ordered dict of field name to field type (``uint32_t``, ``int32_t``,
        ``bytes_t[16]``, ...). Fields are exposed as plain attributes; ``.raw`` re-encodes the current values.

    ``off`` is the file offset the record was read from, when the caller sets it.
    """

    FIELDS = {}

    @classmethod
    def size(cls):
        if '_SIZE' not in cls.__dict__:
            cls._SIZE = sum(value & size_mask for value in cls.FIELDS.values())
        return cls._SIZE

    @staticmethod
    def create_with_bytes(struct_class, raw, byte_order="little"):
        """
        Unpack a struct from raw bytes

        Every field is decoded from its own byte range; nothing is read past ``struct_class.size()``.

        :param struct_class: Struct subclass
        :param raw: bytes-like, at least struct_class.size() long
        :param byte_order: "little" or "big"
        :return: struct_class Instance
        """
        size = struct_class.size()
        if len(raw) < size:
            raise StructSizeError(f'{struct_class.__name__} needs {size} bytes, got {len(raw)}')

        instance: Struct = struct_class(byte_order)
        current_off = 0

        for field, value in struct_class.FIELDS.items():
            field_type = type_mask & value
            field_size = size_mask & value
            data = bytes(raw[current_off:current_off + field_size])

            if field_type == type_bytes:
                field_value = data
            elif field_type == type_sint:
                field_value = _uint_to_int(int.from_bytes(data, byte_order), field_size * 8)
            else:
                field_value = int.from_bytes(data, byte_order)

            setattr(instance, field, field_value)
            current_off += field_size

        instance.post_init()
        return instance

    @staticmethod
    def create_with_values(struct_class, values, byte_order="little"):
        """
        Pack/Create a struct given field values

        :param struct_class: Struct subclass
        :param values: List of values, in FIELDS order
        :param byte_order: "little" or "big"
        :return: struct_class Instance
        """
        instance: Struct = struct_class(byte_order)

        for field, value in zip(struct_class.FIELDS, values):
            setattr(instance, field, value)

        instance.post_init()
        return instance

    @property
    def type_name(self):
        return self.__class__.__name__

    @property
    def raw(self) -> bytes:
        raw = bytearray()
        for field, value in self.FIELDS.items():
            field_size = value & size_mask
            field_dat = getattr(self, field)

            if isinstance(field_dat, (bytes, bytearray)):
                data = bytes(field_dat[:field_size]).ljust(field_size, b'\x00')
            elif isinstance(field_dat, str):
                data = field_dat.encode('utf-8')[:field_size].ljust(field_size, b'\x00')
            else:
                data = int(field_dat).to_bytes(field_size, byteorder=self.byte_order,
                                               signed=(value & type_mask) == type_sint)
            raw += data

        return bytes(raw)

    def __eq__(self, other):
        if type(self) is not type(other):
            return False
        return all(getattr(self, field) == getattr(other, field) for field in self.FIELDS)

    def __ne__(self, other):
        return not self.__eq__(other)

    __hash__ = None

    def __repr__(self):
        return str(self)

    def __str__(self):
        text = f'{self.__class__.__name__}('
        for field in self.FIELDS:
            attr = getattr(self, field)
            if isinstance(attr, int):
                attr = hex(attr)
            text += f'{field}={attr}, '
        return text[:-2] + ')'

    def serialize(self):
        struct_dict = {'type': self.__class__.__name__}

        for field in self.FIELDS:
            field_item = getattr(self, field)
            if isinstance(field_item, (bytes, bytearray)):
                field_item = field_item.hex()
            struct_dict[field] = field_item

        return struct_dict

    def __init__(self, byte_order="little"):
        if not self.FIELDS:
            raise AssertionError("Do not use the bare Struct class; it must be implemented in an actual type")

        self.byte_order = byte_order
        self.off = 0

        for field, value in self.FIELDS.items():
            setattr(self, field, b'' if (value & type_mask) == type_bytes else 0)

    def post_init(self):
        """stub for subclasses. gets called after all fields are set"""
        pass
