"""
Source ingestion engine - polls every subscribed feed once.

Each enabled source is checked in its own task: fetch, parse, decide,
persist, notify. A failure inside one task is converted into that
source's outcome (or logged) and never reaches the other tasks.
run() returns only after every task has finished.
"""

import asyncio
import html
import time
from datetime import timedelta

import structlog

from changewatch.errors import LogicInvariantViolation, NetworkError, ParseError
from changewatch.notifications.notifier import Notifier
from changewatch.sources.config import SourcesConfig
from changewatch.sources.feed_client import FeedClient
from changewatch.sources.health import HealthAction, HealthDecision, SourceHealthTracker
from changewatch.sources.items import evaluate_feed
from changewatch.sources.repository import SourcesRepository
from changewatch.sources.schemas import (
    CheckOutcome,
    Source,
    SourceChanged,
    SourceDisabled,
    SourceFailed,
)

logger = structlog.get_logger(__name__)


def _outcome_name(outcome: CheckOutcome) -> str:
    return type(outcome).__name__.removeprefix("Source").lower()


class SourceIngestionEngine:
    """
    Checks all sources concurrently and records what is new.

    Usage:
        engine = SourceIngestionEngine(SourcesRepository(db), FeedClient(), Notifier())
        await engine.run()
    """

    def __init__(
        self,
        repository: SourcesRepository,
        feed_client: FeedClient,
        notifier: Notifier,
        config: SourcesConfig | None = None,
    ):
        self._repository = repository
        self._feed_client = feed_client
        self._notifier = notifier
        self._config = config or SourcesConfig()
        self._health = SourceHealthTracker(self._config.disable_threshold)
        self._tolerance = timedelta(minutes=self._config.updated_tolerance_minutes)

    async def run(self, sources: list[Source] | None = None) -> dict[int, CheckOutcome]:
        """
        Check every source once.

        Args:
            sources: Sources to check; loaded from the repository when None.

        Returns:
            Outcome per source id. Sources whose task crashed after the
            outcome was known (e.g. a failed write) are absent.
        """
        start = time.monotonic()
        if sources is None:
            sources = await self._repository.list_sources()

        logger.info("Checking sources", count=len(sources))

        tasks = [
            asyncio.create_task(self._check_source(source), name=f"source_{source.id}")
            for source in sources
        ]
        results = await asyncio.gather(*tasks, return_exceptions=True)

        outcomes: dict[int, CheckOutcome] = {}
        for source, result in zip(sources, results):
            if isinstance(result, BaseException):
                logger.error(
                    "Source check crashed",
                    source_id=source.id,
                    url=source.url,
                    error=str(result),
                    error_type=type(result).__name__,
                )
                continue
            outcomes[source.id] = result

        logger.info(
            "Finished checking sources",
            count=len(sources),
            changed=sum(isinstance(o, SourceChanged) for o in outcomes.values()),
            failed=sum(isinstance(o, SourceFailed) for o in outcomes.values()),
            elapsed_seconds=round(time.monotonic() - start, 2),
        )
        return outcomes

    async def _check_source(self, source: Source) -> CheckOutcome:
        """One independent unit of work: evaluate then persist."""
        log = logger.bind(source_id=source.id, url=source.url)

        outcome = await self.evaluate(source)
        log.info("Source evaluated", outcome=_outcome_name(outcome))

        decision = self._health.decide(source, outcome)
        await self._apply(source, outcome, decision)
        return outcome

    async def evaluate(self, source: Source) -> CheckOutcome:
        """Fetch and classify one source without writing anything."""
        if not source.enabled:
            logger.info("Skipping disabled source", source_id=source.id, url=source.url)
            return SourceDisabled()

        try:
            feed = await self._feed_client.fetch(source.url)
        except (NetworkError, ParseError) as e:
            logger.warning(
                "Source fetch failed",
                source_id=source.id,
                url=source.url,
                error=str(e),
                error_type=type(e).__name__,
            )
            return SourceFailed(reason=f"{type(e).__name__}: {e}")

        return evaluate_feed(feed, source.last_checked, self._tolerance)

    async def _apply(
        self, source: Source, outcome: CheckOutcome, decision: HealthDecision
    ) -> None:
        if decision.action is HealthAction.NONE:
            return

        if decision.action in (HealthAction.RECORD_FAILURE, HealthAction.RESET_FAILURES):
            await self._repository.update_source_failure(
                source.id, decision.failed_count, decision.enabled
            )
            if decision.newly_disabled:
                logger.warning(
                    "Source disabled",
                    source_id=source.id,
                    url=source.url,
                    failed_count=decision.failed_count,
                )
                await self._notify_disabled(source, outcome, decision)
            return

        if decision.action is HealthAction.RECORD_SUCCESS:
            if not isinstance(outcome, SourceChanged):
                raise LogicInvariantViolation(
                    f"Success write requested for {_outcome_name(outcome)} outcome"
                )
            await self._repository.record_new_items(
                source.id, decision.last_checked, outcome.items
            )
            logger.info(
                "Recorded new items",
                source_id=source.id,
                items=len(outcome.items),
                last_checked=decision.last_checked.isoformat(),
            )
            await self._notify_items(outcome, source)
            return

        raise LogicInvariantViolation(f"Unhandled health action: {decision.action!r}")

    async def _notify_disabled(
        self, source: Source, outcome: CheckOutcome, decision: HealthDecision
    ) -> None:
        reason = outcome.reason if isinstance(outcome, SourceFailed) else "unknown"
        text = (
            f"Source {source.url} was disabled after {decision.failed_count} "
            f"failed checks.\n\nLast failure: {reason}"
        )
        await self._notifier.notify(
            f"Source disabled: {source.url}",
            text,
            f"<p>Source <a href=\"{html.escape(source.url)}\">{html.escape(source.url)}</a> "
            f"was disabled after {decision.failed_count} failed checks.</p>"
            f"<p>Last failure: {html.escape(reason)}</p>",
        )

    async def _notify_items(self, outcome: SourceChanged, source: Source) -> None:
        feed_title = outcome.feed_title or source.url
        for item in outcome.items:
            await self._notifier.notify(
                f"{item.title} - {feed_title}",
                f"{item.url}\n\n{item.body}",
                f"<p><a href=\"{html.escape(item.url)}\">{html.escape(item.url)}</a></p>"
                f"<p>{html.escape(item.body)}</p>",
            )
