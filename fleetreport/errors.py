from __future__ import annotations


class FleetReportError(Exception):
    """Base class for report and photo pipeline failures."""


class ValidationError(FleetReportError):
    """Input rejected before any rendering happens (empty run, bad geometry, bad draft)."""


class DecodeAnomaly(FleetReportError):
    """Orientation metadata could not be parsed. Never escapes the decoder."""


class EncodeFailure(FleetReportError):
    """The image codec could not decode or re-encode a photo."""


class WriterFailure(FleetReportError):
    """The document backend could not open, place or save something."""


class ExtractionError(FleetReportError):
    """The vision collaborator could not extract vehicle fields from a photo."""


class ReportCancelled(FleetReportError):
    """The caller abandoned the report run before the document was complete."""
