from __future__ import annotations

import json

import pytest

import main


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch, settings):
    monkeypatch.setattr(main, 'get_settings', lambda: settings)


def _output(capsys) -> dict:
    return json.loads(capsys.readouterr().out)


def test_render_command_writes_pdf(tmp_path, capsys, split_color_jpeg):
    (tmp_path / 'truck.jpg').write_bytes(split_color_jpeg(orientation=6))
    records = [
        {
            'driver_name': 'Paulo Mendes',
            'license_plate': 'QWE-1B23',
            'vehicle_model': 'CARRETA',
            'declared_value': 'R$ 2.000,00',
            'payment_status': 'Pendente',
            'photo_path': 'truck.jpg',
        },
        {
            'driver_name': 'Lia Costa',
            'license_plate': 'ABC-1234',
            'declared_value': 'R$ 900,00',
            'payment_status': 'paid',
        },
    ]
    records_path = tmp_path / 'records.json'
    records_path.write_text(json.dumps({'records': records}), encoding='utf-8')
    target = tmp_path / 'out' / 'report.pdf'

    code = main.main(['render', '--records', str(records_path), '--output', str(target), '--operator', 'Rita'])

    payload = _output(capsys)
    assert code == 0
    assert payload['status'] == 'success'
    assert payload['record_count'] == 2
    assert target.read_bytes().startswith(b'%PDF')


def test_render_command_rejects_invalid_record(tmp_path, capsys):
    records_path = tmp_path / 'records.json'
    records_path.write_text(
        json.dumps([{'driver_name': 'X', 'license_plate': 'bad', 'declared_value': '1'}]),
        encoding='utf-8',
    )
    code = main.main(['render', '--records', str(records_path)])
    assert code == 2
    assert _output(capsys)['status'] == 'error'


def test_normalize_command(tmp_path, capsys, split_color_jpeg):
    photo = tmp_path / 'in.jpg'
    photo.write_bytes(split_color_jpeg(1000, 400, orientation=6))
    target = tmp_path / 'out.jpg'

    code = main.main(['normalize', '--photo', str(photo), '--output', str(target)])

    payload = _output(capsys)
    assert code == 0
    assert payload['orientation'] == 6
    assert (payload['width'], payload['height']) == (200, 500)
    assert target.read_bytes()[:2] == b'\xff\xd8'


def test_orientation_command_reports_upright_size(tmp_path, capsys, split_color_jpeg):
    photo = tmp_path / 'in.jpg'
    photo.write_bytes(split_color_jpeg(orientation=8))

    code = main.main(['orientation', '--photo', str(photo), '--width', '200', '--height', '100'])

    payload = _output(capsys)
    assert code == 0
    assert payload == {'orientation': 8, 'name': 'ROTATE_90_CCW', 'upright_size': [100, 200]}


def test_orientation_command_for_non_jpeg(tmp_path, capsys):
    photo = tmp_path / 'in.png'
    photo.write_bytes(b'\x89PNG\r\n\x1a\n')
    assert main.main(['orientation', '--photo', str(photo)]) == 0
    assert _output(capsys)['name'] == 'NOT_APPLICABLE'
