from __future__ import annotations

import logging
import struct
from enum import IntEnum
from pathlib import Path

from ..errors import DecodeAnomaly


logger = logging.getLogger(__name__)

DEFAULT_PREFIX_BYTES = 64 * 1024

_SOI_MARKER = 0xFFD8
_APP1_MARKER = 0xFFE1
_SOS_MARKER = 0xFFDA
_EXIF_SIGNATURE = b'Exif'
_EXIF_HEADER_SIZE = 6  # 'Exif' + two padding bytes
_LITTLE_ENDIAN_TAG = b'II'
_BIG_ENDIAN_TAG = b'MM'
_TIFF_MAGIC = 42
_IFD_ENTRY_SIZE = 12
_ORIENTATION_TAG = 0x0112


class Orientation(IntEnum):
    """EXIF orientation codes plus the two "no correction" sentinels."""

    NOT_APPLICABLE = -2
    UNKNOWN = -1
    NORMAL = 1
    MIRROR_HORIZONTAL = 2
    ROTATE_180 = 3
    MIRROR_VERTICAL = 4
    TRANSPOSE = 5
    ROTATE_90_CW = 6
    TRANSVERSE = 7
    ROTATE_90_CCW = 8

    @property
    def swaps_axes(self) -> bool:
        return 5 <= self.value <= 8

    @property
    def is_known(self) -> bool:
        return 1 <= self.value <= 8


def _read_u16(buffer: bytes, offset: int, limit: int, *, little: bool = False) -> int:
    if offset < 0 or offset + 2 > limit:
        raise DecodeAnomaly(f'u16 read at {offset} past limit {limit}')
    return struct.unpack_from('<H' if little else '>H', buffer, offset)[0]


def _read_u32(buffer: bytes, offset: int, limit: int, *, little: bool = False) -> int:
    if offset < 0 or offset + 4 > limit:
        raise DecodeAnomaly(f'u32 read at {offset} past limit {limit}')
    return struct.unpack_from('<I' if little else '>I', buffer, offset)[0]


def _read_exif_orientation(buffer: bytes, start: int, limit: int) -> Orientation:
    if buffer[start:start + 4] != _EXIF_SIGNATURE:
        raise DecodeAnomaly('APP1 segment is not an Exif block')

    tiff = start + _EXIF_HEADER_SIZE
    byte_order = buffer[tiff:tiff + 2]
    if byte_order == _LITTLE_ENDIAN_TAG:
        little = True
    elif byte_order == _BIG_ENDIAN_TAG:
        little = False
    else:
        raise DecodeAnomaly(f'unknown TIFF byte order {byte_order!r}')

    if _read_u16(buffer, tiff + 2, limit, little=little) != _TIFF_MAGIC:
        raise DecodeAnomaly('bad TIFF magic')

    directory = tiff + _read_u32(buffer, tiff + 4, limit, little=little)
    entry_count = _read_u16(buffer, directory, limit, little=little)
    first_entry = directory + 2
    if first_entry + entry_count * _IFD_ENTRY_SIZE > limit:
        raise DecodeAnomaly(f'IFD0 with {entry_count} entries overruns the segment')

    for index in range(entry_count):
        entry = first_entry + index * _IFD_ENTRY_SIZE
        if _read_u16(buffer, entry, limit, little=little) != _ORIENTATION_TAG:
            continue
        # SHORT values are left-justified in the 4-byte value field.
        value = _read_u16(buffer, entry + 8, limit, little=little)
        if 1 <= value <= 8:
            return Orientation(value)
        raise DecodeAnomaly(f'orientation value {value} out of range')
    return Orientation.UNKNOWN


def _scan_segments(buffer: bytes) -> Orientation:
    length = len(buffer)
    offset = 2
    while offset + 4 <= length:
        marker = _read_u16(buffer, offset, length)
        if marker & 0xFF00 != 0xFF00:
            raise DecodeAnomaly(f'expected a marker at {offset}, found {marker:#06x}')
        if marker == _SOS_MARKER:
            break
        segment_length = _read_u16(buffer, offset + 2, length)
        if segment_length < 2:
            raise DecodeAnomaly(f'segment {marker:#06x} declares length {segment_length}')
        if marker == _APP1_MARKER:
            segment_end = min(offset + 2 + segment_length, length)
            return _read_exif_orientation(buffer, offset + 4, segment_end)
        offset += 2 + segment_length
    return Orientation.UNKNOWN


def decode(buffer: bytes | bytearray | memoryview, *, max_prefix: int = DEFAULT_PREFIX_BYTES) -> Orientation:
    """Return the EXIF orientation stored in a JPEG header.

    Only the first ``max_prefix`` bytes are inspected. A buffer without a JPEG
    start-of-image marker yields ``NOT_APPLICABLE``; any parse inconsistency
    yields ``UNKNOWN``. This function never raises on malformed input.
    """
    data = bytes(buffer[:max_prefix])
    if len(data) < 2 or struct.unpack_from('>H', data, 0)[0] != _SOI_MARKER:
        return Orientation.NOT_APPLICABLE
    try:
        return _scan_segments(data)
    except DecodeAnomaly as exc:
        logger.debug('Ignoring unreadable orientation metadata: %s', exc)
        return Orientation.UNKNOWN


def decode_file(path: Path, *, max_prefix: int = DEFAULT_PREFIX_BYTES) -> Orientation:
    with path.open('rb') as handle:
        prefix = handle.read(max_prefix)
    return decode(prefix, max_prefix=max_prefix)
