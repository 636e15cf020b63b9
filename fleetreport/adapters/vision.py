from __future__ import annotations

import json
import logging
from dataclasses import dataclass

from openai import AsyncOpenAI
from pydantic import ValidationError as PydanticValidationError

from ..errors import ExtractionError
from ..types import CanonicalImage, ExtractedVehicleInfo


logger = logging.getLogger(__name__)

_EXTRACTION_PROMPT = (
    'Look at this vehicle photo and extract the license plate (licensePlate) and the '
    'vehicle model (vehicleModel). Plates use the Brazilian format ABC-1234 or ABC-1B23. '
    'Reply with a JSON object holding those two keys; leave a key empty when unsure.'
)


@dataclass
class VisionConfig:
    base_url: str | None
    api_key: str | None
    model: str
    timeout_seconds: int


class VehicleInfoExtractor:
    """Asks a vision model for the plate and model shown in a canonical photo."""

    def __init__(self, cfg: VisionConfig):
        self.cfg = cfg
        self._client: AsyncOpenAI | None = None

    @property
    def configured(self) -> bool:
        return bool(self.cfg.api_key)

    def client(self) -> AsyncOpenAI:
        if not self.configured:
            raise ExtractionError('vision client is not configured')
        if self._client is None:
            self._client = AsyncOpenAI(
                api_key=self.cfg.api_key,
                base_url=self.cfg.base_url,
                timeout=max(10, int(self.cfg.timeout_seconds)),
            )
        return self._client

    async def extract(self, image: CanonicalImage) -> ExtractedVehicleInfo:
        client = self.client()
        try:
            response = await client.chat.completions.create(
                model=self.cfg.model,
                response_format={'type': 'json_object'},
                messages=[
                    {
                        'role': 'user',
                        'content': [
                            {'type': 'text', 'text': _EXTRACTION_PROMPT},
                            {'type': 'image_url', 'image_url': {'url': image.to_data_url()}},
                        ],
                    }
                ],
            )
        except Exception as exc:
            raise ExtractionError(f'vision request failed: {exc}') from exc

        text = ''
        if response.choices:
            text = (response.choices[0].message.content or '').strip()
        if not text:
            raise ExtractionError('empty response from vision model')
        return parse_extraction(text)


def parse_extraction(text: str) -> ExtractedVehicleInfo:
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ExtractionError(f'vision model returned invalid JSON: {exc}') from exc
    if not isinstance(payload, dict):
        raise ExtractionError('vision model returned a non-object payload')
    try:
        info = ExtractedVehicleInfo.model_validate(payload)
    except PydanticValidationError as exc:
        raise ExtractionError(f'unexpected extraction payload: {exc}') from exc
    return ExtractedVehicleInfo(
        license_plate=(info.license_plate or '').strip() or None,
        vehicle_model=(info.vehicle_model or '').strip() or None,
    )
