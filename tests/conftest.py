from __future__ import annotations

import io
import struct

import pytest
from PIL import Image

from fleetreport.config import Settings
from fleetreport.types import CanonicalImage, PaymentStatus, VehicleRecord


def _exif_app1(orientation: int, *, little: bool = True, signature: bytes = b'Exif') -> bytes:
    fmt = '<' if little else '>'
    order = b'II' if little else b'MM'
    entries = struct.pack(fmt + 'HHIH2x', 0x0112, 3, 1, orientation)
    ifd = struct.pack(fmt + 'H', 1) + entries + struct.pack(fmt + 'I', 0)
    tiff = order + struct.pack(fmt + 'HI', 42, 8) + ifd
    payload = signature + b'\x00\x00' + tiff
    return b'\xff\xe1' + struct.pack('>H', len(payload) + 2) + payload


@pytest.fixture
def exif_header():
    """Hand-assembled JPEG header carrying one orientation tag."""

    def build(
        orientation: int,
        *,
        little: bool = True,
        signature: bytes = b'Exif',
        leading_segments: bytes = b'',
    ) -> bytes:
        return (
            b'\xff\xd8'
            + leading_segments
            + _exif_app1(orientation, little=little, signature=signature)
            + b'\xff\xda\x00\x08'
            + b'\x00' * 6
        )

    return build


@pytest.fixture
def app0_segment():
    def build(payload_size: int) -> bytes:
        return b'\xff\xe0' + struct.pack('>H', payload_size + 2) + b'\x00' * payload_size

    return build


@pytest.fixture
def split_color_jpeg():
    """Left half red, right half blue, optionally tagged with an EXIF orientation."""

    def build(width: int = 200, height: int = 100, orientation: int | None = None) -> bytes:
        image = Image.new('RGB', (width, height), (0, 0, 255))
        image.paste((255, 0, 0), (0, 0, width // 2, height))
        out = io.BytesIO()
        if orientation is None:
            image.save(out, format='JPEG', quality=95)
        else:
            exif = Image.Exif()
            exif[0x0112] = orientation
            image.save(out, format='JPEG', quality=95, exif=exif.tobytes())
        return out.getvalue()

    return build


@pytest.fixture
def canonical_photo() -> CanonicalImage:
    image = Image.new('RGB', (40, 40), (30, 120, 200))
    out = io.BytesIO()
    image.save(out, format='JPEG', quality=50)
    return CanonicalImage(pixel_width=40, pixel_height=40, encoded_bytes=out.getvalue())


@pytest.fixture
def make_record():
    counter = {'n': 0}

    def build(**overrides) -> VehicleRecord:
        counter['n'] += 1
        fields = {
            'id': f'rec-{counter["n"]}',
            'driver_name': f'Driver {counter["n"]}',
            'license_plate': 'ABC-1234',
            'vehicle_model': 'CARRETA (ATÉ 19.40m)',
            'declared_value': 'R$ 1.500,00',
            'payment_status': PaymentStatus.pending,
        }
        fields.update(overrides)
        return VehicleRecord(**fields)

    return build


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(data_dir=tmp_path / 'data', operator_name='Test Operator')
