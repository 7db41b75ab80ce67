"""
Roadmap client: fetch the roadmap page and turn it into a snapshot.

The page embeds its data as ``window.pbData = {...}`` inside a script
element. The JSON is validated with pydantic, then reduced to a
Roadmap holding every tab but only the watched tabs' cards.
"""

import json
import logging

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from changewatch.errors import ParseError
from changewatch.ingestion.http_client import HTTPClient, RetryConfig
from changewatch.roadmap.config import RoadmapConfig
from changewatch.roadmap.schemas import Roadmap, RoadmapCard, RoadmapTab

logger = logging.getLogger(__name__)

DATA_MARKER = "window.pbData"
_SCRIPT_END = "</script>"


class _PortalModel(BaseModel):
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)


class PortalTab(_PortalModel):
    id: str
    name: str
    slug: str = ""


class PortalCard(_PortalModel):
    id: str
    name: str
    description: str = ""
    image_url: str | None = None
    slug: str = ""

    @field_validator("description", mode="before")
    @classmethod
    def _null_description(cls, value):
        return "" if value is None else value


class PortalSection(_PortalModel):
    id: str
    portal_tab_id: str
    position: int


class PortalCardAssignment(_PortalModel):
    portal_tab_id: str
    portal_section_id: str
    portal_card_id: str
    position: int


class PortalData(_PortalModel):
    """The subset of the embedded portal data used to build snapshots."""

    portal_tabs: list[PortalTab]
    portal_cards: list[PortalCard] = []
    portal_sections: list[PortalSection] = []
    portal_card_assignments: list[PortalCardAssignment] = []


def extract_portal_json(page: str) -> str:
    """
    Cut the embedded JSON object out of the roadmap page.

    Takes everything from the first ``{`` after the marker to the last
    ``}`` before the closing script tag.

    Raises:
        ParseError: If any boundary cannot be found.
    """
    start = page.find(DATA_MARKER)
    if start == -1:
        raise ParseError(f"Did not find {DATA_MARKER} in roadmap page")

    open_brace = page.find("{", start)
    script_end = page.find(_SCRIPT_END, start)
    if open_brace == -1:
        raise ParseError("Did not find opening brace of roadmap data")
    if script_end == -1:
        raise ParseError("Did not find end of roadmap data script")

    close_brace = page.rfind("}", open_brace, script_end)
    if close_brace == -1:
        raise ParseError("Did not find closing brace of roadmap data")

    return page[open_brace : close_brace + 1]


def parse_portal_data(page: str) -> PortalData:
    """Extract and validate the embedded portal data."""
    raw = extract_portal_json(page)
    try:
        return PortalData.model_validate(json.loads(raw))
    except json.JSONDecodeError as e:
        raise ParseError(f"Roadmap data is not valid JSON: {e}") from e
    except ValidationError as e:
        raise ParseError(f"Roadmap data has unexpected shape: {e}") from e


def build_snapshot(data: PortalData, watched_tab_ids: list[str]) -> Roadmap:
    """
    Reduce portal data to a snapshot.

    Every tab is kept. Cards are collected only for watched tabs that
    have at least one card assignment, each card carrying the position
    of its section and its position within that section.

    Raises:
        ParseError: If an assignment references an unknown card or section.
    """
    tabs = [
        RoadmapTab(external_id=tab.id, name=tab.name, slug=tab.slug)
        for tab in data.portal_tabs
    ]
    cards_by_id = {card.id: card for card in data.portal_cards}

    cards: dict[str, list[RoadmapCard]] = {}
    for tab_id in watched_tab_ids:
        assignments = [a for a in data.portal_card_assignments if a.portal_tab_id == tab_id]
        if not assignments:
            continue

        sections = {s.id: s for s in data.portal_sections if s.portal_tab_id == tab_id}
        tab_cards = cards.setdefault(tab_id, [])

        for assignment in assignments:
            section = sections.get(assignment.portal_section_id)
            if section is None:
                raise ParseError(
                    f"Assignment in tab {tab_id!r} references unknown section "
                    f"{assignment.portal_section_id!r}"
                )
            card = cards_by_id.get(assignment.portal_card_id)
            if card is None:
                raise ParseError(
                    f"Assignment in tab {tab_id!r} references unknown card "
                    f"{assignment.portal_card_id!r}"
                )
            tab_cards.append(
                RoadmapCard(
                    external_id=card.id,
                    name=card.name,
                    description=card.description,
                    image_url=card.image_url,
                    slug=card.slug,
                    section_position=section.position,
                    card_position=assignment.position,
                )
            )

    return Roadmap.create(tabs, cards)


class SnapshotClient:
    """Fetches the roadmap page and builds the current snapshot."""

    def __init__(
        self,
        config: RoadmapConfig | None = None,
        retry_config: RetryConfig | None = None,
    ):
        self._config = config or RoadmapConfig()
        self._retry_config = retry_config or RetryConfig.from_settings()

    async def fetch_page(self) -> str:
        if not self._config.url:
            raise ValueError("ROADMAP_URL is not configured")

        async with HTTPClient(
            self._retry_config,
            timeout=self._config.fetch_timeout_seconds,
            user_agent=self._config.user_agent,
        ) as client:
            response = await client.get(self._config.url)
        return response.text

    async def fetch(self, watched_tab_ids: list[str]) -> Roadmap:
        """
        Fetch the roadmap and build a snapshot restricted to watched tabs.

        Raises:
            NetworkError: The page could not be fetched.
            ParseError: The page or its embedded data could not be parsed.
        """
        page = await self.fetch_page()
        snapshot = build_snapshot(parse_portal_data(page), watched_tab_ids)
        logger.info(
            "Fetched roadmap: %d tabs, %d watched tabs with %d cards",
            len(snapshot.tabs), len(snapshot.cards), snapshot.card_count(),
        )
        return snapshot
