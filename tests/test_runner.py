from __future__ import annotations

import asyncio
import json
from datetime import datetime

import pymupdf
import pytest

from fleetreport.errors import ExtractionError, ValidationError
from fleetreport.runner import apply_autofill, generate_report, prepare_record, prepare_record_async, prepare_records_async
from fleetreport.storage import report_filename
from fleetreport.types import ExtractedVehicleInfo, PaymentStatus, RecordDraft, ReportStatus, RouteOption


class FakeExtractor:
    configured = True

    def __init__(self, info: ExtractedVehicleInfo | None = None, error: Exception | None = None):
        self.info = info
        self.error = error
        self.calls = 0

    async def extract(self, image):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.info


def _events(directory):
    path = directory / 'events.jsonl'
    return [json.loads(line)['event'] for line in path.read_text(encoding='utf-8').splitlines()]


DRAFT = {
    'driver_name': 'Paulo Mendes',
    'company_name': 'Rio Cargas',
    'license_plate': 'QWE-1B23',
    'vehicle_model': 'CAVALO MECÂNICO',
    'declared_value': 'R$ 2.000,00',
    'payment_status': 'Pago',
}


def test_generate_report_saves_complete_pdf(settings, make_record, tmp_path):
    out_dir = tmp_path / 'out'
    stamp = datetime(2024, 3, 9, 14, 5, 7)
    records = [make_record(payment_status=PaymentStatus.paid) for _ in range(20)]

    result = generate_report(
        records,
        route=RouteOption.santarem_to_manaus,
        output_dir=out_dir,
        generated_at=stamp,
        settings=settings,
    )

    assert result.status is ReportStatus.success
    assert result.filename == 'fleet_report_20240309_140507.pdf'
    assert result.record_count == 20
    pdf_path = out_dir / result.filename
    assert pdf_path.exists()
    with pymupdf.open(str(pdf_path)) as document:
        assert document.page_count == result.page_count >= 2
        first = document[0].get_text()
        assert 'Santarém to Manaus' in first
        assert 'Operator: Test Operator' in first
        assert f'page 1 of {result.page_count}' in first
    assert _events(out_dir) == ['report_started', 'report_completed']
    assert not list(out_dir.glob('*.tmp'))


def test_empty_run_reports_failure_without_file(settings, tmp_path):
    out_dir = tmp_path / 'out'
    result = generate_report([], output_dir=out_dir, settings=settings)

    assert result.status is ReportStatus.error
    assert result.path is None
    assert 'without records' in (result.error or '')
    assert not list(out_dir.glob('*.pdf'))
    assert _events(out_dir) == ['report_started', 'report_failed']


def test_cancelled_run_leaves_no_file(settings, make_record, tmp_path):
    out_dir = tmp_path / 'out'
    result = generate_report(
        [make_record()],
        output_dir=out_dir,
        settings=settings,
        should_cancel=lambda: True,
    )
    assert result.status is ReportStatus.error
    assert not list(out_dir.glob('*.pdf'))
    assert _events(out_dir)[-1] == 'report_cancelled'


def test_explicit_output_path(settings, make_record, tmp_path):
    target = tmp_path / 'custom' / 'frota.pdf'
    result = generate_report([make_record()], output_path=target, operator_name='Rita', settings=settings)
    assert result.status is ReportStatus.success
    assert result.path == str(target)
    assert target.read_bytes().startswith(b'%PDF')


def test_prepare_record_normalizes_photo(settings, split_color_jpeg):
    record = prepare_record(DRAFT, split_color_jpeg(1200, 600, orientation=8), settings=settings)
    assert record.payment_status is PaymentStatus.paid
    assert record.photo is not None
    assert (record.photo.pixel_width, record.photo.pixel_height) == (250, 500)


def test_unreadable_photo_leaves_record_without_photo(settings):
    record = prepare_record(DRAFT, b'\xff\xd8garbage', settings=settings)
    assert record.photo is None
    assert record.driver_name == 'Paulo Mendes'


def test_invalid_plate_is_rejected(settings):
    with pytest.raises(ValidationError):
        prepare_record({**DRAFT, 'license_plate': 'ABC1234'}, settings=settings)


def test_missing_required_fields_are_rejected(settings):
    with pytest.raises(ValidationError):
        prepare_record({**DRAFT, 'driver_name': '   '}, settings=settings)


def test_autofill_fills_only_blank_fields(settings, split_color_jpeg):
    extractor = FakeExtractor(ExtractedVehicleInfo(license_plate='XYZ-9876', vehicle_model='TRUCK BAÚ (14m)'))
    draft = {**DRAFT, 'license_plate': '', 'vehicle_model': 'CARRETA'}

    record = asyncio.run(
        prepare_record_async(draft, split_color_jpeg(), settings=settings, extractor=extractor)
    )

    assert extractor.calls == 1
    assert record.license_plate == 'XYZ-9876'
    assert record.vehicle_model == 'CARRETA'


def test_extraction_failure_does_not_block_record(settings, split_color_jpeg):
    extractor = FakeExtractor(error=ExtractionError('model offline'))
    record = asyncio.run(
        prepare_record_async(DRAFT, split_color_jpeg(), settings=settings, extractor=extractor)
    )
    assert record.license_plate == 'QWE-1B23'
    assert record.photo is not None


def test_batch_preparation_waits_for_every_photo(settings, split_color_jpeg):
    entries = [
        (DRAFT, split_color_jpeg(900, 300, orientation=6)),
        ({**DRAFT, 'driver_name': 'Sem Foto'}, None),
        (RecordDraft.model_validate({**DRAFT, 'driver_name': 'Lia'}), split_color_jpeg()),
    ]
    records = asyncio.run(prepare_records_async(entries, settings=settings))

    assert [r.driver_name for r in records] == ['Paulo Mendes', 'Sem Foto', 'Lia']
    assert records[0].photo is not None and records[0].photo.pixel_height == 500
    assert records[1].photo is None
    assert records[2].photo is not None


def test_apply_autofill_keeps_user_values():
    merged = apply_autofill(
        {'license_plate': 'AAA-1111', 'vehicle_model': ''},
        ExtractedVehicleInfo(license_plate='BBB-2222', vehicle_model='RODOTREM (30m)'),
    )
    assert merged == {'license_plate': 'AAA-1111', 'vehicle_model': 'RODOTREM (30m)'}


def test_report_filename_is_timestamped():
    assert report_filename(datetime(2025, 1, 2, 3, 4, 5)) == 'fleet_report_20250102_030405.pdf'


def test_oversized_photo_is_dropped(tmp_path, split_color_jpeg):
    from fleetreport.config import Settings

    tight = Settings(data_dir=tmp_path / 'data', max_photo_bytes=64)
    record = prepare_record(DRAFT, split_color_jpeg(), settings=tight)
    assert record.photo is None


def test_unknown_route_is_reported_as_failed_run(settings, make_record, tmp_path):
    out_dir = tmp_path / 'out'
    misrouted = settings.model_copy(update={'default_route': 'nowhere'})

    result = generate_report([make_record()], output_dir=out_dir, settings=misrouted)

    assert result.status is ReportStatus.error
    assert 'nowhere' in (result.error or '')
    assert not list(out_dir.glob('*.pdf'))
    assert _events(out_dir) == ['report_started', 'report_failed']


def test_settings_reject_unknown_default_route(tmp_path):
    from pydantic import ValidationError as SettingsError

    from fleetreport.config import Settings

    with pytest.raises(SettingsError):
        Settings(data_dir=tmp_path / 'data', default_route='nowhere')


def test_status_callback_sees_run_progress(settings, make_record, tmp_path):
    seen = []
    generate_report([make_record()], output_dir=tmp_path / 'ok', settings=settings, on_status=seen.append)
    generate_report([], output_dir=tmp_path / 'bad', settings=settings, on_status=seen.append)
    assert seen == [
        ReportStatus.generating_pdf,
        ReportStatus.success,
        ReportStatus.generating_pdf,
        ReportStatus.error,
    ]


def test_batch_reports_every_invalid_entry(settings, split_color_jpeg):
    entries = [
        ({**DRAFT, 'license_plate': 'bad'}, split_color_jpeg()),
        (DRAFT, split_color_jpeg(900, 300, orientation=6)),
        ({**DRAFT, 'driver_name': ''}, None),
    ]
    with pytest.raises(ValidationError) as excinfo:
        asyncio.run(prepare_records_async(entries, settings=settings))

    message = str(excinfo.value)
    assert 'entry 1' in message
    assert 'entry 3' in message
    assert 'entry 2' not in message
