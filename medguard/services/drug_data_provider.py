"""
Drug data provider: RxNorm and openFDA over HTTP, with circuit breaker,
outbound rate limiting and response caching.
"""

import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional

import httpx

from medguard.config import Settings, get_settings
from medguard.core.cache import CacheService
from medguard.core.exceptions import ProviderError
from medguard.core.logging import get_logger
from medguard.core.metrics import CIRCUIT_OPEN, PROVIDER_REQUESTS
from medguard.core.rate_limit import SlidingWindowRateLimiter, build_provider_rate_limiter

logger = get_logger(__name__)

RXNORM = "rxnorm"
OPENFDA = "openfda"


class CircuitBreaker:
    """
    Per-source breaker: ``failure_threshold`` consecutive failures open it.
    After ``reset_timeout`` seconds it goes half-open and stops refusing
    requests; every caller is let through until the next outcome is
    recorded. A failure while half-open reopens it, any success closes it.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        reset_timeout: float = 60,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self._clock = clock
        self._consecutive_failures = 0
        self._opened_at: Optional[float] = None
        self._trial = False

    @property
    def state(self) -> str:
        if self._opened_at is None:
            return "closed"
        if self._trial:
            return "half-open"
        return "open"

    @property
    def is_open(self) -> bool:
        """True while requests to this source must be refused."""
        if self._opened_at is None or self._trial:
            return False
        if self._clock() - self._opened_at >= self.reset_timeout:
            self._trial = True
            logger.info(f"{self.name} circuit half-open, allowing a trial request")
            return False
        return True

    def record_success(self) -> None:
        if self._opened_at is not None:
            logger.info(f"{self.name} circuit closed")
        self._consecutive_failures = 0
        self._opened_at = None
        self._trial = False
        CIRCUIT_OPEN.labels(source=self.name).set(0)

    def record_failure(self) -> None:
        self._consecutive_failures += 1
        if self._trial or self._consecutive_failures >= self.failure_threshold:
            self._opened_at = self._clock()
            self._trial = False
            CIRCUIT_OPEN.labels(source=self.name).set(1)
            logger.warning(
                f"{self.name} circuit opened",
                extra={"consecutive_failures": self._consecutive_failures}
            )


class DrugDataProvider(ABC):
    """
    Boundary to the external drug terminology and safety sources.

    Every method returns the provider's native JSON object. Network errors,
    HTTP errors and malformed payloads raise ``ProviderError``; an openFDA
    404 means "no matching records" and returns an empty result set.
    """

    @abstractmethod
    async def normalize_approximate(self, name: str) -> dict[str, Any]:
        ...

    @abstractmethod
    async def normalize_exact(self, name: str) -> dict[str, Any]:
        ...

    @abstractmethod
    async def spelling_suggestions(self, name: str) -> dict[str, Any]:
        ...

    @abstractmethod
    async def properties(self, rxcui: str) -> dict[str, Any]:
        ...

    @abstractmethod
    async def related_names(self, rxcui: str) -> dict[str, Any]:
        ...

    @abstractmethod
    async def adverse_events(self, name_a: str, name_b: str, limit: int = 100) -> dict[str, Any]:
        ...

    @abstractmethod
    async def label_interaction_text(self, name_a: str, name_b: str) -> dict[str, Any]:
        ...

    async def close(self) -> None:
        """Release network resources."""


class RxNormOpenFDAProvider(DrugDataProvider):
    """
    Provider backed by the public RxNav REST API and openFDA.

    Each source has its own circuit breaker and rate-limit window. Raw
    responses are cached under the ``provider:`` prefix.
    """

    def __init__(
        self,
        cache: CacheService,
        rate_limiter: Optional[SlidingWindowRateLimiter] = None,
        settings: Optional[Settings] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.settings = settings or get_settings()
        self.cache = cache
        self.rate_limiter = rate_limiter or build_provider_rate_limiter()
        self._breakers = {
            RXNORM: CircuitBreaker(
                RXNORM,
                failure_threshold=self.settings.CIRCUIT_BREAKER_THRESHOLD,
                reset_timeout=self.settings.CIRCUIT_BREAKER_TIMEOUT,
            ),
            OPENFDA: CircuitBreaker(
                OPENFDA,
                failure_threshold=self.settings.CIRCUIT_BREAKER_THRESHOLD,
                reset_timeout=self.settings.CIRCUIT_BREAKER_TIMEOUT,
            ),
        }
        self._http_client = client

    def breaker(self, source: str) -> CircuitBreaker:
        return self._breakers[source]

    def circuit_states(self) -> dict[str, str]:
        return {source: breaker.state for source, breaker in self._breakers.items()}

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.settings.PROVIDER_TIMEOUT),
                limits=httpx.Limits(
                    max_connections=self.settings.HTTP_POOL_SIZE,
                    max_keepalive_connections=self.settings.HTTP_POOL_SIZE,
                    keepalive_expiry=self.settings.HTTP_POOL_KEEPALIVE
                )
            )
        return self._http_client

    async def close(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def _request(
        self,
        source: str,
        url: str,
        params: Optional[dict[str, Any]] = None,
        not_found_empty: bool = False,
    ) -> dict[str, Any]:
        """
        GET ``url`` from ``source`` and return the decoded JSON object.

        Args:
            source: Rate-limit and circuit-breaker key.
            url: Absolute endpoint URL.
            params: Query parameters.
            not_found_empty: Treat HTTP 404 as an empty openFDA result set.
        """
        params = params or {}
        cache_key = CacheService.make_key("provider", source, url, params)
        cached = await self.cache.get(cache_key)
        if cached is not None:
            PROVIDER_REQUESTS.labels(source=source, outcome="cached").inc()
            return cached

        breaker = self._breakers[source]
        if breaker.is_open:
            PROVIDER_REQUESTS.labels(source=source, outcome="circuit_open").inc()
            raise ProviderError(
                f"{source} circuit breaker is open",
                details={"source": source}
            )

        await self.rate_limiter.acquire(source)
        client = await self._get_client()

        try:
            response = await client.get(url, params=params)
        except httpx.HTTPError as e:
            breaker.record_failure()
            PROVIDER_REQUESTS.labels(source=source, outcome="error").inc()
            logger.error(f"{source} request error: {e}", extra={"url": url})
            raise ProviderError(
                f"{source} request failed: {e}",
                details={"source": source}
            ) from e

        if response.status_code == 404 and not_found_empty:
            breaker.record_success()
            PROVIDER_REQUESTS.labels(source=source, outcome="empty").inc()
            payload: dict[str, Any] = {"meta": {"results": {"total": 0}}, "results": []}
            await self.cache.set(cache_key, payload)
            return payload

        if response.status_code >= 400:
            breaker.record_failure()
            PROVIDER_REQUESTS.labels(source=source, outcome="error").inc()
            raise ProviderError(
                f"{source} returned HTTP {response.status_code}",
                details={"source": source, "status_code": response.status_code}
            )

        try:
            payload = response.json()
        except ValueError as e:
            breaker.record_failure()
            PROVIDER_REQUESTS.labels(source=source, outcome="error").inc()
            raise ProviderError(
                f"{source} returned a malformed payload",
                details={"source": source}
            ) from e

        if not isinstance(payload, dict):
            breaker.record_failure()
            PROVIDER_REQUESTS.labels(source=source, outcome="error").inc()
            raise ProviderError(
                f"{source} returned a malformed payload",
                details={"source": source}
            )

        breaker.record_success()
        PROVIDER_REQUESTS.labels(source=source, outcome="success").inc()
        await self.cache.set(cache_key, payload)
        return payload

    # ------------------------------------------------------------------
    # RxNorm
    # ------------------------------------------------------------------

    async def normalize_approximate(self, name: str) -> dict[str, Any]:
        return await self._request(
            RXNORM,
            f"{self.settings.RXNORM_BASE_URL}/approximateTerm.json",
            {"term": name, "maxEntries": 1},
        )

    async def normalize_exact(self, name: str) -> dict[str, Any]:
        return await self._request(
            RXNORM,
            f"{self.settings.RXNORM_BASE_URL}/rxcui.json",
            {"name": name, "search": 2},
        )

    async def spelling_suggestions(self, name: str) -> dict[str, Any]:
        return await self._request(
            RXNORM,
            f"{self.settings.RXNORM_BASE_URL}/spellingsuggestions.json",
            {"name": name},
        )

    async def properties(self, rxcui: str) -> dict[str, Any]:
        return await self._request(
            RXNORM,
            f"{self.settings.RXNORM_BASE_URL}/rxcui/{rxcui}/properties.json",
        )

    async def related_names(self, rxcui: str) -> dict[str, Any]:
        return await self._request(
            RXNORM,
            f"{self.settings.RXNORM_BASE_URL}/rxcui/{rxcui}/related.json",
            {"tty": "BN IN"},
        )

    # ------------------------------------------------------------------
    # openFDA
    # ------------------------------------------------------------------

    async def adverse_events(self, name_a: str, name_b: str, limit: int = 100) -> dict[str, Any]:
        search = (
            f'patient.drug.medicinalproduct:"{name_a}" '
            f'AND patient.drug.medicinalproduct:"{name_b}"'
        )
        return await self._request(
            OPENFDA,
            f"{self.settings.OPENFDA_BASE_URL}/event.json",
            {"search": search, "limit": limit},
            not_found_empty=True,
        )

    async def label_interaction_text(self, name_a: str, name_b: str) -> dict[str, Any]:
        search = f'drug_interactions:"{name_a}" AND drug_interactions:"{name_b}"'
        return await self._request(
            OPENFDA,
            f"{self.settings.OPENFDA_BASE_URL}/label.json",
            {"search": search, "limit": 10},
            not_found_empty=True,
        )
