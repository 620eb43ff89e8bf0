"""Formatting of archived captions for replay."""

from collections.abc import Sequence

from livecast.domain.captioning.models import CaptionEvent


def format_time_vtt(seconds: float) -> str:
    """Format time in WebVTT format (HH:MM:SS.mmm)."""
    total_ms = max(0, round(seconds * 1000))
    hours, rem = divmod(total_ms, 3600 * 1000)
    minutes, rem = divmod(rem, 60 * 1000)
    secs, millis = divmod(rem, 1000)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}.{millis:03d}"


def caption_text(event: CaptionEvent, language: str | None = None) -> str:
    """Text of the caption in `language`, falling back to the source text."""
    if language and language in event.translations:
        return event.translations[language]
    return event.source_text


def generate_webvtt(events: Sequence[CaptionEvent], language: str | None = None) -> str:
    """Generate a WebVTT file from archived captions.

    Cue times are the chunk offsets relative to the session start. Failed
    slots and empty captions produce no cue.

    Args:
        events: Caption events of one session
        language: Optional language code for translation lookup

    Returns:
        WebVTT formatted string
    """
    lines = ["WEBVTT", ""]

    cue = 0
    for event in sorted(events, key=lambda e: e.sequence):
        if event.is_failed:
            continue
        text = caption_text(event, language).strip()
        if not text:
            continue

        cue += 1
        start = format_time_vtt(event.start_offset)
        end = format_time_vtt(event.start_offset + event.duration)
        lines.append(f"{cue}")
        lines.append(f"{start} --> {end}")
        lines.append(text)
        lines.append("")

    return "\n".join(lines)
