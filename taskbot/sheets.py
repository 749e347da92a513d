"""Google Sheets values API client."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable
from urllib.parse import quote

import httpx

LOGGER = logging.getLogger(__name__)

SHEETS_API_BASE_URL = "https://sheets.googleapis.com/v4/spreadsheets"

TokenProvider = Callable[[], Awaitable[str]]


@dataclass(slots=True)
class AppendResult:
    """Outcome of a row append."""

    success: bool
    updated_cells: int = 0
    error_message: str | None = None


def static_token(token: str) -> TokenProvider:
    """Token provider for a pre-issued bearer token."""

    async def provide() -> str:
        return token

    return provide


class GoogleSheetsClient:
    """Appends and reads rows with a caller-supplied OAuth bearer token."""

    def __init__(
        self,
        token_provider: TokenProvider,
        base_url: str = SHEETS_API_BASE_URL,
        timeout_seconds: float = 30.0,
        value_input_option: str = "USER_ENTERED",
    ) -> None:
        self._token_provider = token_provider
        self._base_url = base_url
        self._timeout_seconds = timeout_seconds
        self._value_input_option = value_input_option

    async def append_row(self, spreadsheet_id: str, range_: str, values: list[Any]) -> AppendResult:
        """Append one row. Failures are returned, not raised."""

        url = f"{self._base_url}/{spreadsheet_id}/values/{quote(range_, safe='')}:append"
        try:
            token = await self._token_provider()
            async with httpx.AsyncClient(timeout=self._timeout_seconds) as client:
                response = await client.post(
                    url,
                    params={"valueInputOption": self._value_input_option},
                    headers={"Authorization": f"Bearer {token}"},
                    json={"values": [values]},
                )
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as exc:
            LOGGER.error(
                "Google Sheets append failed for %s range %s: %s",
                spreadsheet_id,
                range_,
                exc,
            )
            return AppendResult(success=False, error_message=str(exc) or exc.__class__.__name__)

        updated_cells = int(data.get("updates", {}).get("updatedCells", 0))
        LOGGER.info(
            "Appended row to %s range %s (updated_cells=%d)",
            spreadsheet_id,
            range_,
            updated_cells,
        )
        return AppendResult(success=True, updated_cells=updated_cells)

    async def read_values(self, spreadsheet_id: str, range_: str) -> list[list[str]]:
        """Read a range; raises httpx.HTTPError on failure."""

        url = f"{self._base_url}/{spreadsheet_id}/values/{quote(range_, safe='')}"
        token = await self._token_provider()
        async with httpx.AsyncClient(timeout=self._timeout_seconds) as client:
            response = await client.get(url, headers={"Authorization": f"Bearer {token}"})
            response.raise_for_status()
            data = response.json()
        return [[str(cell) for cell in row] for row in data.get("values", [])]
