from __future__ import annotations

from loguru import logger

from livecast.domain.archive.query import generate_webvtt
from livecast.domain.archive.store import CaptionStore
from livecast.domain.captioning.models import SessionSummary
from livecast.services.integrations.s3_storage import S3Service


class ArchiveExporter:
    """Uploads WebVTT files of a finished session: `captions.vtt` with the
    source text and one `captions-<lang>.vtt` per target language."""

    def __init__(self, store: CaptionStore, s3: S3Service) -> None:
        self._store = store
        self._s3 = s3

    def build_files(self, summary: SessionSummary, events) -> list[tuple[str, str, str]]:
        files = [("captions.vtt", generate_webvtt(events), "text/vtt")]
        for language in summary.target_languages:
            files.append((f"captions-{language}.vtt", generate_webvtt(events, language), "text/vtt"))
        return files

    async def export_session(self, summary: SessionSummary) -> dict[str, str]:
        events = await self._store.list_session_captions(summary.session_id)
        if not events:
            logger.info(f"No archived captions to export for session {summary.session_id}")
            return {}

        urls = await self._s3.upload_caption_files_batch(
            session_id=summary.session_id,
            files=self.build_files(summary, events),
        )
        logger.info(f"Exported {len(urls)} caption file(s) for session {summary.session_id}")
        return urls
