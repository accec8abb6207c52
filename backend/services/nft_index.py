"""NFT index API client, used only to find the highest minted champion id."""

import httpx
from pydantic import BaseModel, ValidationError
from typing import Any, Optional

from config import settings
from utils.logger import get_logger
from utils.retry import PayloadDecodeError, RetryConfig, decode_payload, retry_fetch

logger = get_logger("nft_index")


class CollectionPage(BaseModel):
    nfts: list[Any] = []
    next_token: Optional[str] = None

    @classmethod
    def from_api_response(cls, data: Any) -> "CollectionPage":
        if not isinstance(data, dict):
            raise PayloadDecodeError("collection page must be an object")
        try:
            return cls(
                nfts=data.get("nfts") or [],
                next_token=data.get("nextToken", data.get("next_token")) or None,
            )
        except ValidationError as e:
            raise PayloadDecodeError(f"invalid collection page: {e}") from e

    def next_token_id(self) -> Optional[int]:
        """Decode the hex pagination cursor into a token id"""
        if self.next_token is None:
            return None
        text = self.next_token.strip().lower()
        if text.startswith("0x"):
            text = text[2:]
        try:
            return int(text, 16)
        except ValueError as e:
            raise PayloadDecodeError(f"invalid next token {self.next_token!r}") from e


class NftIndexClient:
    """Client for the getNFTsForCollection listing"""

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        retry_config: Optional[RetryConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.NFT_INDEX_API_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.NFT_INDEX_API_KEY
        self.retry_config = retry_config or RetryConfig.from_settings()
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=settings.API_TIMEOUT_SECONDS, transport=self._transport
            )
        return self._client

    async def close(self):
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def get_nfts_for_collection(self, contract_address: str, start_token: int) -> CollectionPage:
        if not self.api_key:
            raise RuntimeError("NFT_INDEX_API_KEY is not configured")

        async def attempt() -> CollectionPage:
            client = await self._get_client()
            response = await client.get(
                f"{self.base_url}/{self.api_key}/getNFTsForCollection",
                params={
                    "contractAddress": contract_address,
                    "withMetadata": "false",
                    "startToken": str(start_token),
                },
            )
            response.raise_for_status()
            return decode_payload(
                CollectionPage.from_api_response, response.json(), what="collection page"
            )

        return await retry_fetch(
            attempt, self.retry_config, description=f"collection page from {start_token}"
        )


# Singleton instance
nft_index_client = NftIndexClient()
