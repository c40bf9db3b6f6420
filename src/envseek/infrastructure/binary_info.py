"""
Executable header inspection.

Reads just enough of a PE, ELF or Mach-O file to tell whether it is a
32-bit or 64-bit image.
"""

import logging
import struct
from pathlib import Path

from envseek.core.models import Bitness

logger = logging.getLogger(__name__)

_PE_MACHINES = {
    0x014C: Bitness.BITS_32,  # i386
    0x01C4: Bitness.BITS_32,  # ARMv7 thumb
    0x8664: Bitness.BITS_64,  # AMD64
    0xAA64: Bitness.BITS_64,  # ARM64
}

_MACHO_MAGICS = {
    b"\xfe\xed\xfa\xce": Bitness.BITS_32,
    b"\xce\xfa\xed\xfe": Bitness.BITS_32,
    b"\xfe\xed\xfa\xcf": Bitness.BITS_64,
    b"\xcf\xfa\xed\xfe": Bitness.BITS_64,
}


def host_bitness() -> Bitness:
    """Bitness of the running interpreter."""
    return Bitness.BITS_64 if struct.calcsize("P") == 8 else Bitness.BITS_32


def _pe_bitness(f, header: bytes) -> Bitness:
    if len(header) < 0x40:
        return Bitness.UNKNOWN
    (pe_offset,) = struct.unpack_from("<I", header, 0x3C)
    f.seek(pe_offset)
    sig = f.read(6)
    if len(sig) < 6 or sig[:4] != b"PE\x00\x00":
        return Bitness.UNKNOWN
    (machine,) = struct.unpack_from("<H", sig, 4)
    return _PE_MACHINES.get(machine, Bitness.UNKNOWN)


def detect_bitness(path: Path | str) -> Bitness:
    """
    Return the word size of an executable or shared library.

    Scripts, unreadable files and unknown formats give Bitness.UNKNOWN.
    """
    try:
        with open(path, "rb") as f:
            header = f.read(64)
            if header[:4] == b"\x7fELF" and len(header) > 4:
                return {1: Bitness.BITS_32, 2: Bitness.BITS_64}.get(header[4], Bitness.UNKNOWN)
            if header[:4] in _MACHO_MAGICS:
                return _MACHO_MAGICS[header[:4]]
            if header[:2] == b"MZ":
                return _pe_bitness(f, header)
    except OSError as e:
        logger.debug(f"Cannot read header of {path}: {e}")
    return Bitness.UNKNOWN
