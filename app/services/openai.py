"""Integration helpers for the OpenAI chat completions API."""

from __future__ import annotations

import json
import logging
from typing import Any, Sequence

import httpx
from pydantic import ValidationError

from ..config import Settings
from ..db_models import CollectionItem
from ..errors import UpstreamError
from ..models import Recommendation
from ..utils import extract_json_object

logger = logging.getLogger(__name__)

RECOMMENDATION_COUNT = 5
PROMPT_ITEM_LIMIT = 50

SYSTEM_PROMPT = (
    "You provide media recommendations. Never output private or sensitive personal data."
)

RECOMMENDATION_REQUEST_TEMPLATE = """
You are a recommendation assistant for a personal media tracker app.
Only return valid JSON with this shape:
{{"recommendations":[{{"tmdb_id":number,"media_type":"movie"|"tv","reason":"string"}}]}}
Give exactly {count} recommendations.
Use concise reasons.
Avoid requesting or exposing personal data.

User collection summary:
{summary}
"""

RESPONSE_SCHEMA: dict[str, Any] = {
    "name": "recommendations",
    "strict": True,
    "schema": {
        "type": "object",
        "additionalProperties": False,
        "required": ["recommendations"],
        "properties": {
            "recommendations": {
                "type": "array",
                "items": {
                    "type": "object",
                    "additionalProperties": False,
                    "required": ["tmdb_id", "media_type", "reason"],
                    "properties": {
                        "tmdb_id": {"type": "number"},
                        "media_type": {"type": "string", "enum": ["movie", "tv"]},
                        "reason": {"type": "string"},
                    },
                },
            }
        },
    },
}


def build_prompt(collection: Sequence[CollectionItem]) -> str:
    """Summarise the most recent items without notes, ratings or free text."""

    shortlist = [
        {
            "tmdb_id": item.tmdb_id,
            "media_type": item.media_type,
            "status": item.status,
        }
        for item in collection[:PROMPT_ITEM_LIMIT]
    ]
    return RECOMMENDATION_REQUEST_TEMPLATE.format(
        count=RECOMMENDATION_COUNT,
        summary=json.dumps(shortlist),
    )


class OpenAIClient:
    """Client responsible for talking to OpenAI's /chat/completions endpoint."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self._settings = settings
        self._client = http_client

    @property
    def configured(self) -> bool:
        return bool(self._settings.ai_api_key)

    async def generate_recommendations(
        self, collection: Sequence[CollectionItem]
    ) -> list[Recommendation] | None:
        """Ask the model for recommendations based on the collection.

        Returns ``None`` when no usable answer was produced (missing key,
        rejected request, unparseable content). Only a failure to reach the
        endpoint raises.
        """

        api_key = self._settings.ai_api_key
        if not api_key:
            return None

        payload = {
            "model": self._settings.ai_model,
            "temperature": 0.5,
            "response_format": {"type": "json_schema", "json_schema": RESPONSE_SCHEMA},
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": build_prompt(collection)},
            ],
        }
        headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        try:
            response = await self._client.post(
                "/chat/completions", json=payload, headers=headers
            )
        except httpx.TransportError as exc:
            logger.warning("AI provider unreachable: %s", exc)
            raise UpstreamError("AI provider request failed.") from exc

        if response.status_code >= 400:
            logger.warning(
                "AI provider rejected recommendation request (%s): %s",
                response.status_code,
                response.text,
            )
            return None

        try:
            data = response.json()
        except ValueError:
            logger.warning("AI provider returned a non-JSON body")
            return None
        return self._parse_recommendations(data)

    @staticmethod
    def _parse_recommendations(data: Any) -> list[Recommendation] | None:
        if not isinstance(data, dict):
            return None
        choices = data.get("choices") or []
        if not choices or not isinstance(choices[0], dict):
            return None
        content = (choices[0].get("message") or {}).get("content")
        if not isinstance(content, str) or not content.strip():
            return None

        try:
            parsed = extract_json_object(content)
        except ValueError:
            logger.warning("AI provider returned unparseable recommendations")
            return None

        raw_items = parsed.get("recommendations")
        if not isinstance(raw_items, list):
            return None

        recommendations: list[Recommendation] = []
        for entry in raw_items:
            if not isinstance(entry, dict):
                continue
            try:
                recommendations.append(Recommendation.model_validate(entry))
            except ValidationError:
                continue
        return recommendations[:RECOMMENDATION_COUNT]
