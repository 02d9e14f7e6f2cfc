#
#  moscope | moscope
#  exceptions.py
#
#  Exceptions raised while decoding Mach-O and Fat containers. Every decode failure derives from
#    MalformedMachOException and records which stage failed and at what file offset.
#
#  This file is part of moscope. moscope is free software that
#  is made available under the MIT license. Consult the
#  file "LICENSE" that is distributed together with this file
#  for the exact licensing terms.
#
#  Copyright (c) moscope authors 2025.
#


class MalformedMachOException(Exception):
    """
    Base class for every decode failure.

    :param message: human readable description
    :param stage: name of the decoder that failed (``"fat_arch"``, ``"load_commands"``, ...)
    :param offset: file offset the failing read started at, when known
    """

    def __init__(self, message="", stage=None, offset=None):
        self.message = message
        self.stage = stage
        self.offset = offset
        super().__init__(self.__str__())

    def __str__(self):
        text = self.message
        if self.stage is not None:
            text = f'[{self.stage}] {text}'
        if self.offset is not None:
            text = f'{text} (at {hex(self.offset)})'
        return text


class UnsupportedFiletypeException(MalformedMachOException):
    """
    The bytes don't start with any Mach-O or Fat magic.
    """


class TruncatedRecordException(MalformedMachOException):
    """
    Fewer bytes remain than a fixed-size record needs.
    """


class OutOfBoundsReferenceException(MalformedMachOException):
    """
    An offset, size, or index points outside the file or outside its enclosing record.
    """


class MisalignedRecordException(MalformedMachOException):
    """
    A load command size isn't a multiple of the image's word size.
    """


class UnterminatedStringException(MalformedMachOException):
    """
    No NUL terminator was found inside the string's declared bound.
    """


class InvalidEncodingException(MalformedMachOException):
    """
    Text that must be strict UTF-8 isn't.
    """


class PatternException(Exception):
    """
    A string filter pattern failed to compile.
    """
