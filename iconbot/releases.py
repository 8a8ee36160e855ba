from __future__ import annotations

import asyncio
import html
import logging
from datetime import datetime, timezone

import httpx
from pydantic import BaseModel, ValidationError

OTA_BASE = "https://raw.githubusercontent.com/DavinciCodeOS/ota-data/main"

CHANNELS = (
    ("DCOS (stable)", f"{OTA_BASE}/davinci.json"),
    ("DCOS (pre-release)", f"{OTA_BASE}/davinci_pre.json"),
    ("DCOSX (stable)", f"{OTA_BASE}/davincix.json"),
    ("DCOSX (pre-release)", f"{OTA_BASE}/davincix_pre.json"),
)


class OtaRelease(BaseModel):
    datetime: int
    url: str


async def _fetch(client: httpx.AsyncClient, url: str) -> OtaRelease | None:
    resp = await client.get(url)
    try:
        return OtaRelease.model_validate_json(resp.content)
    except ValidationError:
        # Missing or malformed feed means no release for that channel
        logging.info("No usable OTA data at %s (HTTP %s)", url, resp.status_code)
        return None


async def get_latest_releases(
    timeout_sec: float = 20, transport: httpx.AsyncBaseTransport | None = None
) -> list[tuple[str, OtaRelease | None]]:
    async with httpx.AsyncClient(timeout=timeout_sec, transport=transport) as client:
        results = await asyncio.gather(*(_fetch(client, url) for _, url in CHANNELS))
    return [(name, rel) for (name, _), rel in zip(CHANNELS, results)]


def format_releases(releases: list[tuple[str, OtaRelease | None]]) -> str:
    lines = []
    for name, rel in releases:
        if rel is None:
            lines.append(f"{html.escape(name)}: no release available")
            continue
        stamp = datetime.fromtimestamp(rel.datetime, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
        lines.append(
            f'{html.escape(name)}: <a href="{html.escape(rel.url)}">download</a> (Updated {stamp})'
        )
    return "\n".join(lines)
