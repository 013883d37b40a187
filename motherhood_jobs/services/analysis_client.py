"""Thin async adapter to the image-analysis function."""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from motherhood_jobs.services.errors import AnalysisServiceError

logger = logging.getLogger(__name__)


class AnalysisClient:
    """
    POSTs {imageUrl, analysisType, userId} to the analysis service and returns its JSON.
    Any non-2xx answer or transport error is raised as AnalysisServiceError.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport

    async def analyze(self, image_url: str, analysis_type: str, user_id: Optional[str]) -> dict[str, Any]:
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }
        body = {"imageUrl": image_url, "analysisType": analysis_type, "userId": user_id}

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(self.base_url, json=body, headers=headers)
        except httpx.HTTPError as e:
            raise AnalysisServiceError(f"Image analysis request failed: {e}") from e

        if not response.is_success:
            raise AnalysisServiceError(
                f"Image analysis failed: {response.reason_phrase or response.status_code}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise AnalysisServiceError("Image analysis returned a non-JSON body") from e

        logger.debug("Analysis response for %s (%s): %s", user_id, analysis_type, list(data))
        return data
