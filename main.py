from __future__ import annotations

import argparse
import asyncio
import json
import logging
from pathlib import Path
from typing import Any

from fleetreport.config import get_settings
from fleetreport.errors import EncodeFailure, ValidationError
from fleetreport.imaging.normalizer import canvas_size, normalize
from fleetreport.imaging.orientation import decode, decode_file
from fleetreport.runner import build_extractor, generate_report, prepare_records_async
from fleetreport.storage import read_json
from fleetreport.types import ReportStatus, RouteOption


def _print_json(payload: dict) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2))


def _load_entries(records_path: Path) -> list[tuple[dict[str, Any], bytes | None]]:
    payload = read_json(records_path)
    if isinstance(payload, dict):
        payload = payload.get('records', [])
    if not isinstance(payload, list):
        raise ValidationError('records file must hold a JSON list of vehicles')

    entries: list[tuple[dict[str, Any], bytes | None]] = []
    for raw in payload:
        if not isinstance(raw, dict):
            raise ValidationError('every vehicle entry must be a JSON object')
        fields = dict(raw)
        photo_path = fields.pop('photo_path', None)
        photo_bytes = None
        if photo_path:
            path = Path(photo_path).expanduser()
            if not path.is_absolute():
                path = records_path.parent / path
            photo_bytes = path.read_bytes()
        entries.append((fields, photo_bytes))
    return entries


def cmd_render(args: argparse.Namespace) -> int:
    settings = get_settings()
    records_path = Path(args.records).expanduser().resolve()
    if not records_path.is_file():
        _print_json({'status': 'error', 'message': f'Records file not found: {records_path}'})
        return 2

    extractor = build_extractor(settings) if args.autofill else None
    try:
        entries = _load_entries(records_path)
        records = asyncio.run(prepare_records_async(entries, settings=settings, extractor=extractor))
    except (ValidationError, OSError, ValueError) as exc:
        _print_json({'status': 'error', 'message': str(exc)})
        return 2

    output_path = Path(args.output).expanduser().resolve() if args.output else None
    result = generate_report(
        records,
        route=args.route,
        operator_name=args.operator,
        output_path=output_path,
        settings=settings,
    )
    _print_json(result.model_dump(mode='json'))
    return 0 if result.status == ReportStatus.success else 2


def cmd_normalize(args: argparse.Namespace) -> int:
    settings = get_settings()
    photo_path = Path(args.photo).expanduser().resolve()
    if not photo_path.is_file():
        _print_json({'status': 'error', 'message': f'Photo not found: {photo_path}'})
        return 2
    raw = photo_path.read_bytes()
    orientation = decode(raw, max_prefix=settings.orientation_prefix_bytes)
    max_dimension = args.max_dimension or settings.image_max_dimension
    quality = args.quality if args.quality is not None else settings.image_quality
    try:
        image = normalize(raw, orientation, max_dimension, quality)
    except EncodeFailure as exc:
        _print_json({'status': 'error', 'message': str(exc)})
        return 2

    output_path = Path(args.output).expanduser().resolve()
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_bytes(image.encoded_bytes)
    _print_json(
        {
            'status': 'ok',
            'orientation': int(orientation),
            'orientation_name': orientation.name,
            'width': image.pixel_width,
            'height': image.pixel_height,
            'bytes': len(image.encoded_bytes),
            'mime_type': image.mime_type,
            'output': str(output_path),
        }
    )
    return 0


def cmd_orientation(args: argparse.Namespace) -> int:
    photo_path = Path(args.photo).expanduser().resolve()
    if not photo_path.is_file():
        _print_json({'status': 'error', 'message': f'Photo not found: {photo_path}'})
        return 2
    orientation = decode_file(photo_path, max_prefix=get_settings().orientation_prefix_bytes)
    payload: dict[str, Any] = {'orientation': int(orientation), 'name': orientation.name}
    if args.width and args.height:
        payload['upright_size'] = list(canvas_size(args.width, args.height, orientation))
    _print_json(payload)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Vehicle transport report CLI')
    parser.add_argument('--verbose', action='store_true', help='Enable debug logging')
    sub = parser.add_subparsers(dest='command', required=True)

    render = sub.add_parser('render', help='Render a PDF report from a JSON list of vehicles')
    render.add_argument('--records', required=True, help='Path to JSON file with vehicle entries')
    render.add_argument('--output', required=False, help='Output PDF path (default: timestamped file in data dir)')
    render.add_argument('--operator', required=False, help='Operator name printed in the footer')
    render.add_argument('--route', choices=[item.value for item in RouteOption], required=False)
    render.add_argument('--autofill', action='store_true', help='Fill blank plate/model from photos')
    render.set_defaults(func=cmd_render)

    norm = sub.add_parser('normalize', help='Produce the canonical rendition of a photo')
    norm.add_argument('--photo', required=True, help='Source photo')
    norm.add_argument('--output', required=True, help='Where to write the canonical JPEG')
    norm.add_argument('--max-dimension', type=int, required=False)
    norm.add_argument('--quality', type=float, required=False)
    norm.set_defaults(func=cmd_normalize)

    orient = sub.add_parser('orientation', help='Print the EXIF orientation code of a photo')
    orient.add_argument('--photo', required=True, help='Photo to inspect')
    orient.add_argument('--width', type=int, required=False, help='Source width, to report upright size')
    orient.add_argument('--height', type=int, required=False, help='Source height, to report upright size')
    orient.set_defaults(func=cmd_orientation)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )
    return int(args.func(args))


if __name__ == '__main__':
    raise SystemExit(main())
