"""
Seed the card registry from the Pokemon TCG API.

Inserts one unowned card per catalog item. Items that are malformed or fail
to insert are logged and skipped; cards whose name is already registered are
left alone, so the job is safe to re-run.

Runs at app startup when the registry is empty, or standalone:

    python -m cardtrader.jobs.seed_cards
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from cardtrader.config import Settings, settings
from cardtrader.db.database import async_session_factory, init_db
from cardtrader.db.operations import count_cards, create_card, get_card_by_name

logger = logging.getLogger(__name__)

CARDS_ENDPOINT = "/cards"


@dataclass(frozen=True, slots=True)
class CatalogCard:
    """The parts of a catalog item the registry keeps."""

    name: str
    image_url: str | None = None


def parse_catalog_item(item: Any) -> CatalogCard:
    """
    Extract name and small image from one API item.

    Raises:
        ValueError: If the item has no usable name
    """
    if not isinstance(item, dict):
        raise ValueError(f"expected an object, got {type(item).__name__}")

    name = item.get("name")
    if not isinstance(name, str) or not name.strip():
        raise ValueError("item has no name")

    images = item.get("images") or {}
    image_url = images.get("small") if isinstance(images, dict) else None
    return CatalogCard(name=name.strip(), image_url=image_url or None)


async def fetch_catalog(client: httpx.AsyncClient, limit: int) -> list[Any]:
    """
    Fetch up to `limit` catalog items.

    Raises:
        httpx.HTTPError: If the request fails
    """
    response = await client.get(
        CARDS_ENDPOINT,
        params={"pageSize": limit, "select": "id,name,images"},
    )
    response.raise_for_status()
    payload = response.json()
    items = payload.get("data") if isinstance(payload, dict) else None
    return list(items) if isinstance(items, list) else []


async def seed_cards(session: AsyncSession, items: list[Any]) -> int:
    """
    Insert catalog items as unowned cards.

    Each item commits on its own so one bad row never undoes the others.

    Returns:
        Number of cards inserted
    """
    inserted = 0
    for item in items:
        try:
            entry = parse_catalog_item(item)
        except ValueError as e:
            logger.warning("Skipping catalog item: %s", e)
            continue

        try:
            if await get_card_by_name(session, entry.name) is not None:
                logger.debug("Card %r already registered", entry.name)
                continue
            await create_card(session, entry.name, entry.image_url)
            await session.commit()
        except SQLAlchemyError as e:
            await session.rollback()
            logger.warning("Failed to insert card %r: %s", entry.name, e)
            continue

        inserted += 1

    return inserted


async def run_seed(
    config: Settings = settings,
    session_factory: Callable[[], AsyncSession] = async_session_factory,
    transport: httpx.AsyncBaseTransport | None = None,
) -> int:
    """
    Fetch the catalog and insert it into the registry.

    HTTP failures are logged and reported as zero cards seeded.

    Returns:
        Number of cards inserted
    """
    headers = {"User-Agent": "CardTrader/1.0"}
    if config.pokemon_api_key:
        headers["X-Api-Key"] = config.pokemon_api_key

    logger.info(
        "Fetching up to %d cards from %s...", config.seed_card_limit, config.pokemon_api_url
    )

    async with httpx.AsyncClient(
        base_url=config.pokemon_api_url,
        headers=headers,
        follow_redirects=True,
        timeout=30.0,
        transport=transport,
    ) as client:
        try:
            items = await fetch_catalog(client, config.seed_card_limit)
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Failed to fetch card catalog: %s", e)
            return 0

    async with session_factory() as session:
        inserted = await seed_cards(session, items)

    logger.info("Seeding complete. %d of %d catalog cards inserted", inserted, len(items))
    return inserted


async def seed_if_empty(
    config: Settings = settings,
    session_factory: Callable[[], AsyncSession] = async_session_factory,
) -> int:
    """Seed only when the registry has no cards yet."""
    async with session_factory() as session:
        existing = await count_cards(session)

    if existing:
        logger.info("Registry already holds %d cards, skipping seed", existing)
        return 0
    return await run_seed(config, session_factory)


def main() -> None:
    """CLI entry point."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    async def _run() -> None:
        await init_db()
        await run_seed()

    asyncio.run(_run())


if __name__ == "__main__":
    main()
