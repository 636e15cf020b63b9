from __future__ import annotations

import random
import struct

import pytest

from fleetreport.imaging.orientation import Orientation, decode, decode_file


@pytest.mark.parametrize('code', range(1, 9))
@pytest.mark.parametrize('little', [True, False])
def test_reads_every_orientation_code_in_both_byte_orders(exif_header, code, little):
    assert decode(exif_header(code, little=little)) == Orientation(code)


def test_buffer_without_start_marker_is_not_applicable():
    png_signature = b'\x89PNG\r\n\x1a\n' + b'\x00' * 32
    assert decode(png_signature) is Orientation.NOT_APPLICABLE
    assert decode(b'') is Orientation.NOT_APPLICABLE
    assert decode(b'\xff') is Orientation.NOT_APPLICABLE


def test_start_marker_without_segments_is_unknown():
    assert decode(b'\xff\xd8') is Orientation.UNKNOWN


def test_skips_leading_segments(exif_header, app0_segment):
    buffer = exif_header(6, leading_segments=app0_segment(16) + app0_segment(40))
    assert decode(buffer) is Orientation.ROTATE_90_CW


def test_bad_exif_signature_is_unknown(exif_header):
    assert decode(exif_header(6, signature=b'Exiv')) is Orientation.UNKNOWN


def test_out_of_range_value_is_unknown(exif_header):
    assert decode(exif_header(0)) is Orientation.UNKNOWN
    assert decode(exif_header(9)) is Orientation.UNKNOWN


def test_truncated_directory_is_unknown(exif_header):
    full = exif_header(3)
    app1_end = full.index(b'\xff\xda')
    # Drop the tail of the tag entry; the declared segment length now overruns the buffer.
    truncated = full[: app1_end - 8]
    assert decode(truncated) is Orientation.UNKNOWN


def test_declared_length_past_buffer_end_is_unknown():
    buffer = b'\xff\xd8' + b'\xff\xe0' + struct.pack('>H', 0xFFF0) + b'\x00' * 10
    assert decode(buffer) is Orientation.UNKNOWN


def test_segment_length_below_two_is_unknown():
    buffer = b'\xff\xd8' + b'\xff\xe0\x00\x01' + b'\x00' * 10
    assert decode(buffer) is Orientation.UNKNOWN


def test_non_marker_byte_stops_scan():
    assert decode(b'\xff\xd8\x12\x34\x00\x10' + b'\x00' * 16) is Orientation.UNKNOWN


def test_directory_offset_pointing_outside_segment_is_unknown():
    tiff = b'II' + struct.pack('<HI', 42, 0x7FFF0000)
    payload = b'Exif\x00\x00' + tiff
    buffer = b'\xff\xd8\xff\xe1' + struct.pack('>H', len(payload) + 2) + payload
    assert decode(buffer) is Orientation.UNKNOWN


def test_metadata_beyond_prefix_is_not_scanned(exif_header, app0_segment):
    buffer = exif_header(8, leading_segments=app0_segment(2000))
    assert decode(buffer) is Orientation.ROTATE_90_CCW
    assert decode(buffer, max_prefix=512) is Orientation.UNKNOWN


def test_never_raises_on_random_input():
    rng = random.Random(1234)
    for _ in range(500):
        size = rng.randint(0, 96)
        body = bytes(rng.getrandbits(8) for _ in range(size))
        result = decode(b'\xff\xd8' + body)
        assert isinstance(result, Orientation)


def test_reads_orientation_written_by_pillow(split_color_jpeg, tmp_path):
    path = tmp_path / 'rotated.jpg'
    path.write_bytes(split_color_jpeg(orientation=6))
    assert decode_file(path) is Orientation.ROTATE_90_CW


def test_plain_jpeg_without_exif_is_unknown(split_color_jpeg):
    assert decode(split_color_jpeg()) is Orientation.UNKNOWN


def test_axis_swap_flag():
    assert [code for code in Orientation if code.swaps_axes] == [
        Orientation.TRANSPOSE,
        Orientation.ROTATE_90_CW,
        Orientation.TRANSVERSE,
        Orientation.ROTATE_90_CCW,
    ]
    assert not Orientation.UNKNOWN.is_known
