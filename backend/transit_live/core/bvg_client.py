"""Async client for the BVG HAFAS REST API (v6.bvg.transport.rest)."""

import asyncio
import logging

import httpx

from transit_live.schemas.trip import NOT_MODIFIED, NotModified

logger = logging.getLogger(__name__)

# One listing request per product; asking for everything at once gets TOO_MANY
PRODUCTS = ("suburban", "subway", "tram", "bus", "ferry", "express", "regional")

# Retry configuration for listing requests
MAX_RETRIES = 3
RETRY_BACKOFF = [2, 4, 8]  # seconds between retries


class UpstreamError(Exception):
    """The API answered with an error we cannot recover from by retrying."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class UpstreamUnavailable(UpstreamError):
    """Transient failure: 5xx or no connection. Try again later."""


class BvgClient:
    """Fetches trip listings and trip details."""

    def __init__(
        self,
        base_url: str = "https://v6.bvg.transport.rest",
        operator_names: str = "Berliner Verkehrsbetriebe,S-Bahn Berlin GmbH",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.operator_names = operator_names
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            headers={"Accept": "application/json"},
            transport=transport,
        )
        # trip id -> ETag of the last detail response
        self._etags: dict[str, str] = {}

    async def close(self) -> None:
        await self._client.aclose()

    async def _get(self, path: str, label: str, params=None, headers=None) -> httpx.Response:
        """Single GET; 5xx and connection problems raise UpstreamUnavailable."""
        try:
            resp = await self._client.get(path, params=params, headers=headers)
        except httpx.TransportError as e:
            raise UpstreamUnavailable(f"{label}: {type(e).__name__}: {e}") from e
        if resp.status_code >= 500:
            raise UpstreamUnavailable(f"{label}: HTTP {resp.status_code}", resp.status_code)
        return resp

    async def _get_with_retry(self, path: str, label: str, params=None) -> httpx.Response:
        """GET request with retry and exponential backoff on transient failures."""
        for attempt in range(MAX_RETRIES):
            try:
                return await self._get(path, label, params=params)
            except UpstreamUnavailable as e:
                wait = RETRY_BACKOFF[attempt]
                logger.warning(
                    "%s attempt %d/%d failed (%s), retrying in %ds",
                    label, attempt + 1, MAX_RETRIES + 1, e, wait,
                )
                await asyncio.sleep(wait)
        try:
            return await self._get(path, label, params=params)
        except UpstreamUnavailable as e:
            logger.error("%s failed after %d attempts: %s", label, MAX_RETRIES + 1, e)
            raise

    @staticmethod
    def _error_message(resp: httpx.Response) -> str:
        try:
            data = resp.json()
        except ValueError:
            return resp.reason_phrase
        if isinstance(data, dict):
            return str(data.get("message") or resp.reason_phrase)
        return resp.reason_phrase

    async def fetch_trips(self, product: str) -> list[dict]:
        """Fetch the preliminary trip listing for one product."""
        params = {"operatorNames": self.operator_names}
        params.update({p: "true" if p == product else "false" for p in PRODUCTS})
        label = f"trips ({product})"
        resp = await self._get_with_retry("/trips", label, params=params)

        try:
            data = resp.json()
        except ValueError as e:
            raise UpstreamError(f"{label}: invalid JSON", resp.status_code) from e

        if resp.is_success:
            trips = data.get("trips", []) if isinstance(data, dict) else []
            logger.debug("Fetched %d %s trips", len(trips), product)
            return trips
        if isinstance(data, dict) and data.get("hafasCode") == "NO_MATCH":
            return []
        raise UpstreamError(f"{label}: {self._error_message(resp)}", resp.status_code)

    async def fetch_all_trips(self) -> list[dict]:
        """Fetch listings for all products concurrently; failed products are skipped."""
        results = await asyncio.gather(
            *(self.fetch_trips(p) for p in PRODUCTS), return_exceptions=True
        )
        trips: list[dict] = []
        for product, result in zip(PRODUCTS, results):
            if isinstance(result, UpstreamError):
                logger.warning("Skipping %s trips: %s", product, result)
                continue
            if isinstance(result, BaseException):
                raise result
            trips.extend(result)
        logger.info("Fetched %d trips from BVG", len(trips))
        return trips

    async def fetch_trip_details(self, trip_id: str) -> dict | NotModified:
        """Fetch a trip with polyline and stopovers.

        Returns NOT_MODIFIED when the upstream ETag still matches. Transient
        failures are not retried here; the caller reschedules.
        """
        headers = {}
        etag = self._etags.get(trip_id)
        if etag:
            headers["If-None-Match"] = etag

        label = f"trip {trip_id}"
        resp = await self._get(f"/trips/{trip_id}", label, params={"polyline": "true"}, headers=headers)
        if resp.status_code == 304:
            return NOT_MODIFIED
        if not resp.is_success:
            raise UpstreamError(f"{label}: {self._error_message(resp)}", resp.status_code)

        try:
            data = resp.json()
        except ValueError as e:
            raise UpstreamError(f"{label}: invalid JSON", resp.status_code) from e
        trip = data.get("trip") if isinstance(data, dict) else None
        if not isinstance(trip, dict):
            raise UpstreamError(f"{label}: response has no trip", resp.status_code)

        if "etag" in resp.headers:
            self._etags[trip_id] = resp.headers["etag"]
        return trip

    def forget(self, trip_id: str) -> None:
        self._etags.pop(trip_id, None)
