from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Iterable, Sequence

from pydantic import ValidationError as PydanticValidationError
from reportlab.lib.units import mm

from .adapters.vision import VehicleInfoExtractor, VisionConfig
from .config import Settings, get_settings
from .errors import EncodeFailure, ExtractionError, ReportCancelled, ValidationError, WriterFailure
from .imaging.normalizer import normalize_photo, normalize_photo_async
from .report.columns import ColumnSpec
from .report.instructions import split_pages
from .report.layout import RenderOptions, ReportLayoutEngine
from .report.writer import DocumentWriter, ReportLabDocumentWriter
from .storage import append_event, report_filename, write_bytes_atomic
from .types import (
    CanonicalImage,
    ExtractedVehicleInfo,
    RecordDraft,
    ReportResult,
    ReportStatus,
    RouteOption,
    VehicleRecord,
)


logger = logging.getLogger(__name__)

DraftInput = RecordDraft | dict[str, Any]


def build_extractor(settings: Settings | None = None) -> VehicleInfoExtractor:
    settings = settings or get_settings()
    return VehicleInfoExtractor(
        VisionConfig(
            base_url=settings.openai_base_url,
            api_key=settings.openai_api_key,
            model=settings.vision_model,
            timeout_seconds=settings.vision_timeout_seconds,
        )
    )


def build_render_options(
    settings: Settings,
    *,
    title: str | None,
    operator_name: str | None,
    generated_at: datetime | None,
) -> RenderOptions:
    return RenderOptions(
        row_height=settings.pdf_row_height_mm * mm,
        photo_size=settings.pdf_photo_size_mm * mm,
        font_name=settings.pdf_font_name,
        bold_font_name=settings.pdf_bold_font_name,
        font_size=settings.pdf_body_font_size,
        title=title,
        generated_at=generated_at,
        operator_name=operator_name,
        missing_photo_label=settings.pdf_missing_photo_label,
    )


def apply_autofill(fields: dict[str, Any], info: ExtractedVehicleInfo) -> dict[str, Any]:
    """Fill plate and model from an extraction hint without overwriting user input."""
    merged = dict(fields)
    if info.license_plate and not str(merged.get('license_plate') or '').strip():
        merged['license_plate'] = info.license_plate
    if info.vehicle_model and not str(merged.get('vehicle_model') or '').strip():
        merged['vehicle_model'] = info.vehicle_model
    return merged


def _draft_fields(draft: DraftInput) -> dict[str, Any]:
    if isinstance(draft, RecordDraft):
        return draft.model_dump()
    return dict(draft)


def _validate_draft(fields: dict[str, Any]) -> RecordDraft:
    try:
        return RecordDraft.model_validate(fields)
    except PydanticValidationError as exc:
        problems = '; '.join(
            f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in exc.errors()
        )
        raise ValidationError(f'invalid vehicle record: {problems}') from exc


def _photo_within_limit(photo_bytes: bytes, settings: Settings) -> bool:
    if len(photo_bytes) > settings.max_photo_bytes:
        logger.warning(
            'Photo of %d bytes exceeds the %d byte limit; record continues without it',
            len(photo_bytes),
            settings.max_photo_bytes,
        )
        return False
    return True


def _normalize_or_none(photo_bytes: bytes | None, settings: Settings) -> CanonicalImage | None:
    if not photo_bytes or not _photo_within_limit(photo_bytes, settings):
        return None
    try:
        return normalize_photo(
            photo_bytes,
            max_dimension=settings.image_max_dimension,
            quality=settings.image_quality,
            prefix_bytes=settings.orientation_prefix_bytes,
        )
    except EncodeFailure as exc:
        logger.warning('Photo could not be normalized; record continues without it: %s', exc)
        return None


def prepare_record(
    draft: DraftInput,
    photo_bytes: bytes | None = None,
    *,
    settings: Settings | None = None,
    record_id: str | None = None,
) -> VehicleRecord:
    settings = settings or get_settings()
    validated = _validate_draft(_draft_fields(draft))
    photo = _normalize_or_none(photo_bytes, settings)
    return validated.to_record(photo, record_id=record_id)


async def prepare_record_async(
    draft: DraftInput,
    photo_bytes: bytes | None = None,
    *,
    settings: Settings | None = None,
    extractor: VehicleInfoExtractor | None = None,
    record_id: str | None = None,
) -> VehicleRecord:
    settings = settings or get_settings()
    fields = _draft_fields(draft)

    photo: CanonicalImage | None = None
    if photo_bytes and _photo_within_limit(photo_bytes, settings):
        try:
            photo = await normalize_photo_async(
                photo_bytes,
                max_dimension=settings.image_max_dimension,
                quality=settings.image_quality,
                prefix_bytes=settings.orientation_prefix_bytes,
            )
        except EncodeFailure as exc:
            logger.warning('Photo could not be normalized; record continues without it: %s', exc)

    if photo is not None and extractor is not None and extractor.configured:
        try:
            fields = apply_autofill(fields, await extractor.extract(photo))
        except ExtractionError as exc:
            logger.warning('Vehicle info extraction failed; keeping form values: %s', exc)

    return _validate_draft(fields).to_record(photo, record_id=record_id)


async def prepare_records_async(
    entries: Iterable[tuple[DraftInput, bytes | None]],
    *,
    settings: Settings | None = None,
    extractor: VehicleInfoExtractor | None = None,
) -> list[VehicleRecord]:
    """Prepare every record; returns only once all photos finished normalizing.

    Invalid drafts do not cut the batch short: every entry is awaited and the
    failures are reported together in one ValidationError, numbered from 1.
    """
    tasks = [
        prepare_record_async(draft, photo_bytes, settings=settings, extractor=extractor)
        for draft, photo_bytes in entries
    ]
    results = await asyncio.gather(*tasks, return_exceptions=True)

    problems: list[str] = []
    for number, result in enumerate(results, start=1):
        if isinstance(result, ValidationError):
            problems.append(f'entry {number}: {result}')
        elif isinstance(result, BaseException):
            raise result
    if problems:
        raise ValidationError('; '.join(problems))
    return list(results)


def resolve_route(route: RouteOption | str | None, settings: Settings) -> RouteOption:
    value = route or settings.default_route
    try:
        return RouteOption(value)
    except ValueError as exc:
        choices = ', '.join(item.value for item in RouteOption)
        raise ValidationError(f'unknown route {value!r}; expected one of: {choices}') from exc


def _failed(message: str, exc: Exception, *, record_count: int) -> ReportResult:
    return ReportResult(
        status=ReportStatus.error,
        message=message,
        record_count=record_count,
        error=str(exc),
    )


def generate_report(
    records: Sequence[VehicleRecord],
    *,
    route: RouteOption | str | None = None,
    operator_name: str | None = None,
    output_dir: Path | None = None,
    output_path: Path | None = None,
    generated_at: datetime | None = None,
    columns: ColumnSpec | None = None,
    writer: DocumentWriter | None = None,
    should_cancel: Callable[[], bool] | None = None,
    on_status: Callable[[ReportStatus], None] | None = None,
    settings: Settings | None = None,
) -> ReportResult:
    """Lay out, write and persist one report run.

    The PDF reaches disk only after the writer returned a complete document;
    validation errors, writer failures and cancellation leave no file behind.
    ``on_status`` sees ``generating_pdf`` when the run starts, then the final
    status of the returned result.
    """
    settings = settings or get_settings()
    records = list(records)
    generated_at = generated_at or datetime.now()
    operator = operator_name or settings.operator_name

    if output_path is not None:
        target = output_path
    else:
        target = (output_dir or settings.reports_dir()) / report_filename(generated_at)

    if on_status is not None:
        on_status(ReportStatus.generating_pdf)
    result = _run_report(
        records,
        target=target,
        route=route,
        operator=operator,
        generated_at=generated_at,
        columns=columns,
        writer=writer,
        should_cancel=should_cancel,
        settings=settings,
    )
    if on_status is not None:
        on_status(result.status)
    return result


def _run_report(
    records: list[VehicleRecord],
    *,
    target: Path,
    route: RouteOption | str | None,
    operator: str | None,
    generated_at: datetime,
    columns: ColumnSpec | None,
    writer: DocumentWriter | None,
    should_cancel: Callable[[], bool] | None,
    settings: Settings,
) -> ReportResult:
    events_root = target.parent
    append_event(
        'report_started',
        root=events_root,
        status=ReportStatus.generating_pdf.value,
        records=len(records),
        filename=target.name,
    )
    try:
        route_option = resolve_route(route, settings)
        options = build_render_options(
            settings,
            title=route_option.title,
            operator_name=operator,
            generated_at=generated_at,
        )
        instructions = ReportLayoutEngine(columns, options).render(records)
        if should_cancel is not None and should_cancel():
            raise ReportCancelled('report run cancelled after layout')
        writer = writer or ReportLabDocumentWriter(
            page_width=options.page_width,
            page_height=options.page_height,
            title=route_option.title,
            author=operator,
            producer=settings.app_name,
        )
        pdf_bytes = writer.write(instructions, should_cancel=should_cancel)
        if should_cancel is not None and should_cancel():
            raise ReportCancelled('report run cancelled before saving')
        write_bytes_atomic(target, pdf_bytes)
    except ReportCancelled as exc:
        append_event('report_cancelled', root=events_root, filename=target.name)
        logger.info('Report run cancelled: %s', exc)
        return _failed('Report generation cancelled.', exc, record_count=len(records))
    except ValidationError as exc:
        append_event('report_failed', root=events_root, error=str(exc))
        logger.error('Report input rejected: %s', exc)
        return _failed('Report input was rejected; check the vehicles and route.', exc, record_count=len(records))
    except (WriterFailure, OSError) as exc:
        append_event('report_failed', root=events_root, error=str(exc))
        logger.error('Report document could not be written: %s', exc)
        return _failed('Error generating the report document.', exc, record_count=len(records))

    page_count = len(split_pages(instructions))
    append_event(
        'report_completed',
        root=events_root,
        filename=target.name,
        pages=page_count,
        records=len(records),
    )
    logger.info('Wrote report %s (%d pages, %d records)', target, page_count, len(records))
    return ReportResult(
        status=ReportStatus.success,
        message='Report saved successfully.',
        path=str(target),
        filename=target.name,
        page_count=page_count,
        record_count=len(records),
    )
