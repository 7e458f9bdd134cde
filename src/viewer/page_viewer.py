from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Union

from pydantic import ValidationError

from common.config import ViewerConfig
from common.content_api import ContentApiClient
from common.envelope import b64decode_strict
from common.errors import FallbackRequired, NotFoundError, WorksheetError
from common.scheduler import TaskScheduler
from store.models import GuidanceItem, GuidedWorksheet, Region, RegionWorksheet, parse_worksheet_meta

from .layout import LayoutMapper, LayoutTransform, Rect
from .media import MediaElement
from .narration import NarrationSynchronizer
from .notices import Notifier
from .opener import PageOpener, ScopedAsset
from .overlay import OverlayPlan, compose, region_at
from .session import GuidedSession, Mode, RegionSession


logger = logging.getLogger(__name__)

WorksheetMetaT = Union[RegionWorksheet, GuidedWorksheet]


@dataclass(frozen=True)
class PageTicket:
    """Generation token of one page request; only the latest may be applied."""

    worksheet_id: str
    page_index: int
    serial: int


@dataclass
class PageContent:
    meta: WorksheetMetaT
    asset: Optional[ScopedAsset]
    encrypted: bool


class WorksheetViewer:
    """
    Client-side page view: delivery, geometry, interaction and narration.

    Page loads run in three steps so the fetch can happen off the UI loop:
    `navigate()` (synchronous: stops media, releases the previous page,
    issues a ticket), `fetch(ticket)` (network + decrypt) and
    `apply(ticket, content)` (discarded unless the ticket is still current).
    `open_page()` chains all three.
    """

    def __init__(
        self,
        config: ViewerConfig,
        *,
        api: ContentApiClient,
        audio: MediaElement,
        video: MediaElement,
        scheduler: Optional[TaskScheduler] = None,
        notifier: Optional[Notifier] = None,
        is_backgrounded: Callable[[], bool] = lambda: False,
    ) -> None:
        self._config = config
        self._api = api
        self._scheduler = scheduler or TaskScheduler()
        self._notifier = notifier or Notifier()
        self._mapper = LayoutMapper()
        self._opener = PageOpener(config.decoded_page_key()) if config.page_key else None
        self._narrator = NarrationSynchronizer(
            audio=audio,
            video=video,
            scheduler=self._scheduler,
            notifier=self._notifier,
            timing=config.avatar,
            audio_base=config.audio_base,
            ready_timeout=config.audio_ready_timeout,
            start_delay=config.narration_delay,
            is_backgrounded=is_backgrounded,
        )
        video.load(config.avatar_video)

        self._serial = 0
        self._ticket: Optional[PageTicket] = None
        self._content: Optional[PageContent] = None
        self._session: Optional[RegionSession] = None
        self._guided_progress: Dict[str, int] = {}

    # --------------- Introspection ---------------
    @property
    def notifier(self) -> Notifier:
        return self._notifier

    @property
    def scheduler(self) -> TaskScheduler:
        return self._scheduler

    @property
    def narrator(self) -> NarrationSynchronizer:
        return self._narrator

    @property
    def mapper(self) -> LayoutMapper:
        return self._mapper

    @property
    def session(self) -> Optional[RegionSession]:
        return self._session

    @property
    def ticket(self) -> Optional[PageTicket]:
        return self._ticket

    @property
    def content(self) -> Optional[PageContent]:
        return self._content

    @property
    def regions(self) -> List[Region]:
        if self._content is None or self._ticket is None:
            return []
        meta = self._content.meta
        if isinstance(meta, RegionWorksheet):
            return meta.regions_for_page(self._ticket.page_index)
        return []

    @property
    def guidance(self) -> List[GuidanceItem]:
        if self._content is None or self._ticket is None:
            return []
        meta = self._content.meta
        if isinstance(meta, GuidedWorksheet):
            page = meta.page(self._ticket.page_index)
            return list(page.guidance) if page else []
        return []

    @property
    def page_protected(self) -> bool:
        if self._content is None or self._ticket is None:
            return False
        meta = self._content.meta
        if isinstance(meta, RegionWorksheet):
            return meta.is_page_protected(self._ticket.page_index)
        if isinstance(meta, GuidedWorksheet):
            return False
        raise TypeError(f"unknown worksheet kind: {type(meta).__name__}")

    # --------------- Page lifecycle ---------------
    def navigate(self, worksheet_id: str, page_index: int) -> PageTicket:
        """Leave the current page and reserve a ticket for the next one."""
        if self._ticket is None or self._ticket.worksheet_id != worksheet_id:
            self._guided_progress = {}
        self._leave_page()
        self._serial += 1
        self._ticket = PageTicket(worksheet_id=worksheet_id, page_index=page_index, serial=self._serial)
        logger.info("Loading worksheet %s page %d", worksheet_id, page_index)
        self._notifier.info("Loading PDF", f"Worksheet {worksheet_id}, page {page_index}")
        return self._ticket

    def fetch(self, ticket: PageTicket) -> PageContent:
        """Network and decrypt work for `ticket`; touches no view state."""
        if self._opener is not None:
            try:
                return self._fetch_encrypted(ticket, self._opener)
            except FallbackRequired:
                logger.info("Encrypted delivery unavailable; falling back to signed URL")
        return self._fetch_plain(ticket)

    def apply(self, ticket: PageTicket, content: PageContent) -> bool:
        """Install fetched content if `ticket` is still current."""
        if ticket != self._ticket:
            logger.debug("Discarding stale page content for %s", ticket)
            if content.asset is not None:
                content.asset.release()
            return False

        meta = content.meta
        session: RegionSession
        if isinstance(meta, RegionWorksheet):
            available = len(meta.regions_for_page(ticket.page_index))
            logger.info("Found %d regions for page %d", available, ticket.page_index)
            session = RegionSession(
                worksheet_id=ticket.worksheet_id,
                page_index=ticket.page_index,
                scheduler=self._scheduler,
                narrator=self._narrator,
            )
        elif isinstance(meta, GuidedWorksheet):
            if meta.page(ticket.page_index) is None:
                if content.asset is not None:
                    content.asset.release()
                self._notifier.error("Invalid page", f"Page {ticket.page_index} is not part of this worksheet")
                return False
            session = GuidedSession(
                worksheet_id=ticket.worksheet_id,
                page_index=ticket.page_index,
                scheduler=self._scheduler,
                progress=self._guided_progress,
            )
        else:
            raise TypeError(f"unknown worksheet kind: {type(meta).__name__}")

        self._content = content
        self._session = session
        self._notifier.info("PDF Loaded Successfully", meta.document_name)
        return True

    def open_page(self, worksheet_id: str, page_index: int) -> bool:
        ticket = self.navigate(worksheet_id, page_index)
        try:
            content = self.fetch(ticket)
        except WorksheetError as err:
            self._report_load_error(ticket, err)
            return False
        return self.apply(ticket, content)

    def close(self) -> None:
        self._leave_page()
        self._ticket = None
        self._narrator.close()

    # --------------- Surface geometry ---------------
    def page_rendered(self, natural_width: float, natural_height: float, rendered: Rect, container: Rect) -> LayoutTransform:
        return self._mapper.page_loaded(natural_width, natural_height, rendered, container)

    def resized(self, rendered: Rect, container: Rect) -> Optional[LayoutTransform]:
        return self._mapper.resized(rendered, container)

    def pixel_ratio_changed(self, ratio: float, rendered: Rect, container: Rect) -> Optional[LayoutTransform]:
        return self._mapper.pixel_ratio_changed(ratio, rendered, container)

    def overlay(self) -> Optional[OverlayPlan]:
        """Blur plan for the page view; None while narration text is shown."""
        transform = self._mapper.transform
        natural = self._mapper.natural_size
        if transform is None or natural is None or self._content is None:
            return None
        if self._session is not None and not self._session.state.is_idle and self._session.mode is Mode.TEXT:
            return None
        return compose(self.regions, transform, natural[0], natural[1], protected=self.page_protected)

    # --------------- Interaction ---------------
    def click_at(self, x: float, y: float) -> Optional[Region]:
        transform = self._mapper.transform
        if transform is None or self._session is None:
            return None
        region = region_at(self.regions, transform, x, y)
        if region is not None:
            self._session.click(region)
        return region

    def select(self, target: Union[Region, GuidanceItem]) -> None:
        if self._session is None:
            raise NotFoundError("No page is loaded")
        self._session.click(target)

    def next_step(self) -> bool:
        return self._session.advance_step() if self._session is not None else False

    def toggle_mode(self) -> Optional[Mode]:
        return self._session.toggle_mode() if self._session is not None else None

    def deactivate(self) -> None:
        """Back from an active guidance item to the item list."""
        if isinstance(self._session, GuidedSession):
            self._session.deactivate()

    def pump(self) -> int:
        """Run due timers and reconcile the avatar; the host calls this from its event loop.

        A stalled video emits no timeupdate, so the visible-but-paused check
        and the return to idle also run here.
        """
        ran = self._scheduler.run_due()
        if self._narrator.video_visible:
            self._narrator.tick()
        return ran

    # --------------- Internal ---------------
    def _leave_page(self) -> None:
        if self._session is not None:
            self._session.navigate_away()
        else:
            self._scheduler.next_generation()
            self._narrator.stop()
        self._session = None
        if self._content is not None and self._content.asset is not None:
            self._content.asset.release()
        self._content = None
        self._mapper.reset()

    def _fetch_encrypted(self, ticket: PageTicket, opener: PageOpener) -> PageContent:
        data = self._api.get_encrypted_worksheet(
            ticket.worksheet_id, user_id=self._config.user_id, page_index=ticket.page_index
        )
        ciphertext = b64decode_strict(data["encryptedPdf"], "encryptedPdf")
        iv = b64decode_strict(data["iv"], "iv")
        plaintext = opener.open(ciphertext, iv)
        asset = ScopedAsset(plaintext, label=f"{ticket.worksheet_id}/{ticket.page_index}")

        raw_meta = data.get("meta")
        try:
            if not isinstance(raw_meta, dict):
                raw_meta = self._api.get_worksheet_data(ticket.worksheet_id, page_index=ticket.page_index)["meta"]
            meta = _parse_meta(raw_meta)
        except WorksheetError:
            asset.release()
            raise
        return PageContent(meta=meta, asset=asset, encrypted=True)

    def _fetch_plain(self, ticket: PageTicket) -> PageContent:
        data = self._api.get_worksheet_data(ticket.worksheet_id, page_index=ticket.page_index)
        meta = _parse_meta(data["meta"])
        asset: Optional[ScopedAsset] = None
        url = data.get("pdfUrl")
        if isinstance(url, str) and url:
            asset = ScopedAsset(self._api.download(url), label=f"{ticket.worksheet_id}/{ticket.page_index}")
        return PageContent(meta=meta, asset=asset, encrypted=False)

    def _report_load_error(self, ticket: PageTicket, err: WorksheetError) -> None:
        if ticket != self._ticket:
            logger.debug("Ignoring error for superseded page request %s", ticket)
            return
        logger.warning("Page load failed for %s: %s", ticket, err.message)

        def reload() -> None:
            self.open_page(ticket.worksheet_id, ticket.page_index)

        self._notifier.error("PDF Load Error", err.message, retry=reload if err.retryable else None)


def _parse_meta(raw: object) -> WorksheetMetaT:
    if not isinstance(raw, dict):
        raise WorksheetError("Worksheet metadata missing from response")
    try:
        return parse_worksheet_meta(raw)
    except ValidationError as ex:
        raise WorksheetError("Invalid worksheet metadata", details=str(ex)) from ex


__all__ = ["PageContent", "PageTicket", "WorksheetViewer"]
