"""
Transcript Parser
SRT files and timeline TXT exports into ordered transcript segments.
"""
from __future__ import annotations

from dataclasses import dataclass, field
import logging
import math
from pathlib import Path
import re
from typing import List, Optional, Tuple, Union

from core import TranscriptSegment
from utils.exceptions import TranscriptParseError


logger = logging.getLogger(__name__)

DEFAULT_FPS = 30


@dataclass
class ParsedTranscript:
    language: str
    duration_sec: int
    segments: List[TranscriptSegment] = field(default_factory=list)


class SrtParser:
    """
    Subtitle parser.

    Accepts `HH:MM:SS,mmm` / `HH:MM:SS.mmm` and frame-based
    `HH:MM:SS:FF` timestamps, separated by `-->` or ` - `. Blocks without
    a timeline, without text or with end <= start are skipped.
    """

    TIMESTAMP_MS = re.compile(r"^(\d{1,2}):(\d{2}):(\d{2})[,.](\d{3})$")
    TIMESTAMP_FRAME = re.compile(r"^(\d{1,2}):(\d{2}):(\d{2}):(\d{2})$")
    SPEAKER_LINE = re.compile(r"^[a-zA-ZÀ-ÿ' ]{2,30}$")
    SENTENCE_PUNCT = re.compile(r"[.!?]")
    BLOCK_SPLIT = re.compile(r"\n\s*\n")
    MULTIPLE_SPACES = re.compile(r"\s+")

    def __init__(self, fps: int = DEFAULT_FPS):
        self.fps = fps

    def to_ms(self, raw: str) -> Optional[int]:
        compact = raw.strip()
        match = self.TIMESTAMP_MS.match(compact)
        if match:
            h, m, s, ms = (int(part) for part in match.groups())
            return h * 3_600_000 + m * 60_000 + s * 1000 + ms

        match = self.TIMESTAMP_FRAME.match(compact)
        if match:
            h, m, s, frames = (int(part) for part in match.groups())
            # round half up, matching subtitle tools
            frame_ms = int(math.floor(frames / self.fps * 1000 + 0.5))
            return h * 3_600_000 + m * 60_000 + s * 1000 + frame_ms

        return None

    def parse_timeline(self, line: str) -> Optional[Tuple[int, int]]:
        compact = line.strip()
        for separator in ("-->", " - "):
            if separator not in compact:
                continue
            parts = [part.strip() for part in compact.split(separator)]
            if len(parts) < 2 or not parts[0] or not parts[1]:
                return None
            start, end = self.to_ms(parts[0]), self.to_ms(parts[1])
            if start is None or end is None:
                return None
            return start, end
        return None

    def clean_lines(self, lines: List[str]) -> str:
        if not lines:
            return ""
        cleaned = list(lines)
        first = cleaned[0].strip()
        # TXT exports often open each block with a speaker marker
        if len(cleaned) > 1 and self.SPEAKER_LINE.match(first) and not self.SENTENCE_PUNCT.search(first):
            cleaned = cleaned[1:]
        return self.MULTIPLE_SPACES.sub(" ", " ".join(cleaned)).strip()

    def parse(self, content: str, language: str = "pt-BR") -> ParsedTranscript:
        normalized = content.lstrip("\ufeff").replace("\r\n", "\n").strip()
        if not normalized:
            raise TranscriptParseError("SRT is empty")

        raw_segments: List[Tuple[int, int, str]] = []
        for block in self.BLOCK_SPLIT.split(normalized):
            lines = [line.strip() for line in block.split("\n") if line.strip()]
            timeline_idx = next(
                (i for i, line in enumerate(lines) if self.parse_timeline(line) is not None), None
            )
            if timeline_idx is None:
                continue
            start_ms, end_ms = self.parse_timeline(lines[timeline_idx])
            text = self.clean_lines(lines[timeline_idx + 1:])
            if not text or end_ms <= start_ms:
                continue
            raw_segments.append((start_ms, end_ms, text))

        raw_segments.sort(key=lambda item: item[0])
        segments = [
            TranscriptSegment(
                idx=i + 1,
                start_ms=start_ms,
                end_ms=end_ms,
                text=text,
                tokens_est=len(text.split()),
            )
            for i, (start_ms, end_ms, text) in enumerate(raw_segments)
        ]
        if not segments:
            raise TranscriptParseError("No valid transcript segments found in SRT")

        logger.debug(f"Parsed {len(segments)} transcript segments")
        return ParsedTranscript(
            language=language,
            duration_sec=math.ceil(segments[-1].end_ms / 1000),
            segments=segments,
        )


def parse_srt(content: str, language: str = "pt-BR") -> ParsedTranscript:
    return SrtParser().parse(content, language)


def parse_srt_file(path: Union[str, Path], language: str = "pt-BR") -> ParsedTranscript:
    """Read a UTF-8 subtitle file; unreadable files raise `TranscriptParseError`."""
    file_path = Path(path)
    try:
        content = file_path.read_text(encoding="utf-8-sig")
    except (OSError, UnicodeDecodeError) as e:
        raise TranscriptParseError(f"Cannot read transcript: {e}", filename=str(file_path)) from e
    try:
        return parse_srt(content, language)
    except TranscriptParseError as e:
        e.filename = str(file_path)
        raise
