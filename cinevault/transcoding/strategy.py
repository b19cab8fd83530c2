"""
Per-track copy/transcode decisions.
"""

from typing import FrozenSet, Optional

from ..models import CodecProfile, TrackAction, TranscodeStrategy

# Codecs every mainstream browser plays from an MP4 container
VIDEO_COPY_ALLOWLIST: FrozenSet[str] = frozenset({"h264", "avc", "avc1"})
AUDIO_COPY_ALLOWLIST: FrozenSet[str] = frozenset({"aac", "mp3"})


def _action_for(codec: Optional[str], allowlist: FrozenSet[str]) -> TrackAction:
    if codec and codec.lower() in allowlist:
        return TrackAction.COPY
    return TrackAction.TRANSCODE


def plan(profile: CodecProfile) -> TranscodeStrategy:
    """Decide, per track, whether the source can be copied as-is."""
    return TranscodeStrategy(
        video_action=_action_for(profile.video_codec, VIDEO_COPY_ALLOWLIST),
        audio_action=_action_for(profile.audio_codec, AUDIO_COPY_ALLOWLIST),
        subtitle_indexes=tuple(t.index for t in profile.subtitle_tracks if t.is_text),
    )
