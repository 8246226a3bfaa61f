import re
from typing import Dict, Any, List, Optional

import structlog
from pytube import YouTube
from youtube_transcript_api import YouTubeTranscriptApi

from .transcript import Chapter, TranscriptSegment, VideoContext

logger = structlog.get_logger(__name__)

# "0:00 Intro", "1:02:03 - Deep dive", "(12:30) Wrap up"
_CHAPTER_LINE_RE = re.compile(
    r"^\s*\(?((?:\d{1,2}:)?\d{1,2}:\d{2})\)?\s*[-–:|]?\s*(.+?)\s*$"
)


def extract_video_id(url: str) -> str:
    """Extract video ID from YouTube URL."""
    if "v=" in url:
        return url.split("v=")[1].split("&")[0]
    # Handle short URLs or other formats
    return url.split("/")[-1].split("?")[0]


def parse_timestamp(value: str) -> int:
    seconds = 0
    for part in value.split(":"):
        seconds = seconds * 60 + int(part)
    return seconds


def parse_chapters_from_description(description: Optional[str]) -> List[Chapter]:
    """
    Parse YouTube-style chapter timestamps from a video description.

    YouTube only treats a timestamp list as chapters when it starts at 0:00,
    so anything else yields no chapters.
    """
    if not description:
        return []

    by_start: Dict[int, Chapter] = {}
    for line in description.splitlines():
        match = _CHAPTER_LINE_RE.match(line)
        if not match:
            continue
        start = parse_timestamp(match.group(1))
        by_start.setdefault(start, Chapter(title=match.group(2), start_seconds=float(start)))

    chapters = [by_start[start] for start in sorted(by_start)]
    if not chapters or chapters[0].start_seconds != 0:
        return []
    return chapters


class YoutubeClient:
    def __init__(self):
        self.client = YouTubeTranscriptApi()

    def get_transcript_segments(self, video_id: str) -> List[TranscriptSegment]:
        transcript = self.client.fetch(video_id)
        segments = [
            TranscriptSegment(text=entry.text.strip(), start=float(entry.start), duration=float(entry.duration))
            for entry in transcript
            if entry.text and entry.text.strip()
        ]
        segments.sort(key=lambda s: s.start)
        return segments

    def get_video_metadata(self, video_id: str, url: str = None) -> Dict[str, Any]:
        """
        Get video metadata using pytube.
        Returns: title, channel, duration (seconds), URL, description
        """
        watch_url = f"https://www.youtube.com/watch?v={video_id}"
        try:
            yt = YouTube(url or watch_url)
            return {
                "title": yt.title,
                "channel": yt.author,
                "duration": yt.length,  # in seconds
                "url": watch_url,
                "description": yt.description or "",
            }
        except Exception as e:
            # Fallback to basic info if pytube fails
            logger.warning("Video metadata lookup failed", video_id=video_id, error=str(e))
            return {
                "title": "Unknown",
                "channel": "Unknown",
                "duration": 0,
                "url": watch_url,
                "description": "",
            }

    def get_video_context(self, url: str) -> VideoContext:
        """Fetch transcript, metadata and chapters for a video."""
        video_id = extract_video_id(url)
        metadata = self.get_video_metadata(video_id, url)
        context = VideoContext(
            video_id=video_id,
            title=metadata["title"],
            url=metadata["url"],
            channel=metadata["channel"],
            chapters=parse_chapters_from_description(metadata["description"]),
        )
        try:
            context.segments = self.get_transcript_segments(video_id)
        except Exception as e:
            logger.warning("Transcript fetch failed", video_id=video_id, error=str(e))
            context.error = f"Could not fetch transcript: {e}"
        return context
