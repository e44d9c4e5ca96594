import asyncio
import base64
import json
import logging
import re
from typing import Any

from openai import AsyncOpenAI, OpenAIError
from pydantic import BaseModel, ConfigDict, Field

from dispatch_app.core.config import settings as core_settings
from dispatch_app.core.errors import ExternalServiceError, ExtractionError


logger = logging.getLogger(__name__)

LOAD_TYPES = ("Reefer", "Dry Van", "Flatbed")
DEFAULT_CONFIDENCE = 50.0
ALL_MODELS_FAILED = "All AI models failed or are overloaded. Please try again later."

LOAD_EXTRACTION_PROMPT = """
You are a logistics expert that extracts load information from shipping documents, bills of lading, and load sheets.

Analyze this PDF document and extract relevant information. Return the data in the exact JSON format below.

{
  "referenceId": "string or null",
  "loadType": "Reefer" | "Dry Van" | "Flatbed" | null,
  "temperature": number or null (only for Reefer loads),
  "rate": number or null,
  "pickupLocations": [
    {"locationName": "string or null", "address": "string or null", "city": "string or null",
     "state": "string or null", "postalCode": "string or null", "dateTime": "ISO string or null"}
  ],
  "deliveryLocations": [ same shape as pickupLocations ],
  "brokerInfo": {"name": "string or null", "contact": "phone string or null", "email": "string or null"},
  "confidence": number (0-100, your confidence in the extraction accuracy)
}

Instructions:
- Look for "BOL", "Load #", "Reference", "PRO#" for referenceId
- Identify equipment types: "Reefer", "Refrigerated", "Dry Van", "Flatbed"
- Extract temperatures for refrigerated loads
- Find rate information ("Rate", "Amount", "Total")
- Identify pickup and delivery locations with addresses, cities, states, ZIP codes and appointment times
- Find broker contact information
- Return null for fields that cannot be found and [] for empty arrays
- Be conservative with confidence scoring
- Return ONLY the JSON object, no additional text
""".strip()


class LocationData(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    location_name: str | None = Field(default=None, alias="locationName")
    address: str | None = None
    city: str | None = None
    state: str | None = None
    postal_code: str | None = Field(default=None, alias="postalCode")
    date_time: str | None = Field(default=None, alias="dateTime")


class BrokerInfo(BaseModel):
    name: str | None = None
    contact: str | None = None
    email: str | None = None


class ExtractedLoadData(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    reference_id: str | None = Field(default=None, alias="referenceId")
    load_type: str | None = Field(default=None, alias="loadType")
    temperature: float | None = None
    rate: float | None = None
    pickup_locations: list[LocationData] = Field(default_factory=list, alias="pickupLocations")
    delivery_locations: list[LocationData] = Field(default_factory=list, alias="deliveryLocations")
    broker_info: BrokerInfo = Field(default_factory=BrokerInfo, alias="brokerInfo")
    confidence: float = 0.0


def _extract_json_object(payload: str) -> dict:
    match = re.search(r"\{[\s\S]*\}", payload or "")
    if not match:
        raise ExtractionError("No JSON found in AI response")
    try:
        parsed = json.loads(match.group(0))
    except json.JSONDecodeError as exc:
        raise ExtractionError("Failed to parse AI response") from exc
    if not isinstance(parsed, dict):
        raise ExtractionError("Failed to parse AI response")
    return parsed


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _text_fields(raw: Any, names: tuple[str, ...]) -> dict[str, str]:
    if not isinstance(raw, dict):
        return {}
    return {name: raw[name] for name in names if isinstance(raw.get(name), str)}


def _locations(raw: Any) -> list[LocationData]:
    if not isinstance(raw, list):
        return []
    names = ("locationName", "address", "city", "state", "postalCode", "dateTime")
    return [LocationData(**_text_fields(item, names)) for item in raw if isinstance(item, dict)]


def validate_extracted_data(data: Any) -> ExtractedLoadData:
    """Keep only well-typed fields from a model reply; anything else becomes empty."""
    if not isinstance(data, dict):
        return ExtractedLoadData()

    load_type = data.get("loadType")
    confidence = data.get("confidence")
    return ExtractedLoadData(
        referenceId=data["referenceId"] if isinstance(data.get("referenceId"), str) else None,
        loadType=load_type if load_type in LOAD_TYPES else None,
        temperature=data["temperature"] if _is_number(data.get("temperature")) else None,
        rate=data["rate"] if _is_number(data.get("rate")) else None,
        pickupLocations=_locations(data.get("pickupLocations")),
        deliveryLocations=_locations(data.get("deliveryLocations")),
        brokerInfo=BrokerInfo(**_text_fields(data.get("brokerInfo"), ("name", "contact", "email"))),
        confidence=max(0.0, min(100.0, float(confidence))) if _is_number(confidence) else DEFAULT_CONFIDENCE,
    )


def _build_messages(pdf_bytes: bytes, filename: str) -> list[dict]:
    encoded = base64.b64encode(pdf_bytes).decode("ascii")
    return [
        {
            "role": "user",
            "content": [
                {"type": "text", "text": LOAD_EXTRACTION_PROMPT},
                {
                    "type": "file",
                    "file": {
                        "filename": filename or "document.pdf",
                        "file_data": f"data:application/pdf;base64,{encoded}",
                    },
                },
            ],
        }
    ]


async def _complete_with_fallback(client: AsyncOpenAI, messages: list[dict]) -> str:
    models = core_settings.ai_models
    max_attempts = max(int(core_settings.AI_MAX_ATTEMPTS_PER_MODEL or 1), 1)

    for model in models:
        for attempt in range(1, max_attempts + 1):
            try:
                response = await asyncio.wait_for(
                    client.chat.completions.create(
                        model=model,
                        messages=messages,
                        temperature=0.1,
                        max_tokens=core_settings.AI_MAX_OUTPUT_TOKENS,
                    ),
                    timeout=core_settings.AI_TIMEOUT_SECONDS,
                )
                return response.choices[0].message.content or ""
            except asyncio.TimeoutError:
                logger.warning("ai_extraction: model=%s attempt=%d timed out", model, attempt)
            except OpenAIError as exc:
                logger.warning("ai_extraction: model=%s attempt=%d error=%s", model, attempt, exc)

            if attempt < max_attempts:
                await asyncio.sleep(core_settings.AI_BACKOFF_SECONDS * attempt)

    raise ExternalServiceError(ALL_MODELS_FAILED)


async def extract_load_data(pdf_bytes: bytes, filename: str, *, client: AsyncOpenAI | None = None) -> ExtractedLoadData:
    if client is None:
        api_key = (core_settings.OPENAI_API_KEY or "").strip()
        if not api_key:
            raise ExternalServiceError("OpenAI API key not configured", status_code=503)
        client = AsyncOpenAI(api_key=api_key)

    content = await _complete_with_fallback(client, _build_messages(pdf_bytes, filename))
    extracted = validate_extracted_data(_extract_json_object(content))
    logger.info(
        "ai_extraction: file=%s reference=%s confidence=%.0f",
        filename,
        extracted.reference_id,
        extracted.confidence,
    )
    return extracted
