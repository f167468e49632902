"""Sarah Cannon Research Institute (SCRI) trial search API wrapper.

Every response is wrapped in an envelope ``{data, message, success,
exceptionDetail}``; a non-2xx status or ``success: false`` raises
``ScriApiError``.
"""

from __future__ import annotations

import logging
from typing import Any, TypeVar
from urllib.parse import quote

import httpx
from pydantic import BaseModel, ValidationError

from trial_navigator.config import settings
from trial_navigator.errors import ScriApiError
from trial_navigator.models.trial import ScriFilterItem, ScriSearchPage, ScriTrial

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


class ScriClient:
    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = (base_url or settings.scri_base_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.http_timeout_seconds
        self._transport = transport

    async def _get(self, endpoint: str) -> Any:
        """GET an endpoint and unwrap the response envelope."""
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                headers={"Accept": "application/json"},
                transport=self._transport,
            ) as client:
                response = await client.get(endpoint)
                response.raise_for_status()
                payload = response.json()
        except httpx.HTTPStatusError as exc:
            logger.error(
                "SCRI API HTTP error %s for %s", exc.response.status_code, endpoint
            )
            raise ScriApiError(f"API error: {exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            logger.error("SCRI API request failed for %s: %s", endpoint, exc)
            raise ScriApiError(f"API request failed: {exc}") from exc
        except ValueError as exc:
            logger.error("SCRI API returned non-JSON body for %s", endpoint)
            raise ScriApiError("API returned an unreadable response") from exc

        if not isinstance(payload, dict):
            raise ScriApiError(f"API returned unexpected payload type: {type(payload).__name__}")
        if not payload.get("success"):
            detail = payload.get("message") or payload.get("exceptionDetail") or "unknown error"
            raise ScriApiError(f"API error: {detail}")
        return payload.get("data")

    @staticmethod
    def _validate(model: type[ModelT], data: Any, endpoint: str) -> ModelT:
        try:
            return model.model_validate(data)
        except ValidationError as exc:
            logger.error("SCRI API returned malformed %s for %s", model.__name__, endpoint)
            raise ScriApiError(f"API returned malformed data for {endpoint}") from exc

    async def get_filters(self) -> list[ScriFilterItem]:
        endpoint = "/uifilters/default"
        data = await self._get(endpoint)
        items = data.get("filterItemList", []) if isinstance(data, dict) else None
        if not isinstance(items, list):
            raise ScriApiError(f"API returned malformed data for {endpoint}")
        return [self._validate(ScriFilterItem, item, endpoint) for item in items]

    async def list_cancer_types(self) -> list[str]:
        """Enabled cancer-type query strings in display order."""
        filters = await self.get_filters()
        enabled = [f for f in filters if f.is_enabled]
        enabled.sort(key=lambda f: f.sort_order)
        return [f.filter_item_text for f in enabled]

    async def search_trials(self, cancer_type: str, page: int = 1) -> ScriSearchPage:
        """Fetch one page (1-indexed) of trials for a cancer type."""
        endpoint = f"/trials/search/1/{quote(cancer_type, safe='')}/{page}"
        data = await self._get(endpoint)
        return self._validate(ScriSearchPage, data or {}, endpoint)

    async def get_trial_details(self, study_id: str) -> ScriTrial:
        endpoint = f"/trials/{quote(study_id, safe='')}"
        data = await self._get(endpoint)
        if not data:
            raise ScriApiError(f"Trial {study_id} not found")
        return self._validate(ScriTrial, data, endpoint)

    async def search_all_trials(self, cancer_type: str) -> list[ScriTrial]:
        """Walk every result page for a cancer type."""
        first = await self.search_trials(cancer_type, 1)
        trials = list(first.search_results_data)
        for page in range(2, first.total_page_count + 1):
            next_page = await self.search_trials(cancer_type, page)
            trials.extend(next_page.search_results_data)
        return trials
