import httpx
from typing import Any, Optional

from config import settings
from models.fighter import Fighter
from models.pagination import TournamentPage
from models.tournament import TournamentDetail
from utils.logger import get_logger
from utils.retry import RetryConfig, decode_payload, retry_fetch

logger = get_logger("redvillage")


class RedVillageClient:
    """Client for the game API (champions, tournament listing, battle detail)"""

    def __init__(
        self,
        base_url: Optional[str] = None,
        retry_config: Optional[RetryConfig] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.REDVILLAGE_API_URL).rstrip("/")
        self.retry_config = retry_config or RetryConfig.from_settings()
        # A missing champion answers 404: the token is not minted yet
        self.fighter_retry_config = RetryConfig(
            max_attempts=self.retry_config.max_attempts,
            base_delay=self.retry_config.base_delay,
            max_delay=self.retry_config.max_delay,
            exponential_base=self.retry_config.exponential_base,
            jitter=self.retry_config.jitter,
            retryable_exceptions=self.retry_config.retryable_exceptions,
            permanent_status_codes=(404,),
        )
        self.timeout = timeout if timeout is not None else settings.API_TIMEOUT_SECONDS
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                transport=self._transport,
                headers={"Accept": "application/json"},
            )
        return self._client

    async def close(self):
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def _get_json(self, path: str, params: Optional[dict] = None) -> Any:
        client = await self._get_client()
        response = await client.get(f"{self.base_url}{path}", params=params)
        response.raise_for_status()
        return response.json()

    # ==================== CHAMPIONS ====================

    async def get_fighter(self, fighter_id: int) -> Fighter:
        """Fetch and decode one champion. Raises PermanentFetchError when the
        id does not exist or its metadata is malformed."""

        async def attempt() -> Fighter:
            data = await self._get_json(f"/champions/id/{fighter_id}")
            return decode_payload(Fighter.from_api_response, data, what="fighter payload")

        return await retry_fetch(
            attempt, self.fighter_retry_config, description=f"fighter {fighter_id}"
        )

    # ==================== TOURNAMENTS ====================

    async def get_tournament_page(self, page_size: int, page_index: int) -> TournamentPage:
        """Fetch one listing page; items are left undecoded"""

        async def attempt() -> TournamentPage:
            data = await self._get_json(
                "/tournaments",
                params={"page_size": page_size, "page_index": page_index},
            )
            return decode_payload(TournamentPage.from_api_response, data, what="tournament page")

        return await retry_fetch(
            attempt,
            self.retry_config,
            description=f"tournament page {page_size}/{page_index}",
        )

    async def get_tournament_detail(self, service_id: int, tournament_id: int) -> TournamentDetail:
        """Fetch the battle log for one tournament"""

        async def attempt() -> TournamentDetail:
            data = await self._get_json(
                f"/battles/service/{service_id}/tournament/{tournament_id}"
            )
            return decode_payload(
                TournamentDetail.from_api_response, data, what="tournament detail"
            )

        return await retry_fetch(
            attempt,
            self.retry_config,
            description=f"tournament detail {service_id}/{tournament_id}",
        )


# Singleton instance
redvillage_client = RedVillageClient()
