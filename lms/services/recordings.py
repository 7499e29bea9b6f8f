"""Link Zoom cloud recordings to the sessions they were recorded in."""
import logging
from datetime import datetime
from typing import Any, Optional

from lms.models.session import ClassSession
from lms.services.zoom import ZoomError, ZoomService

logger = logging.getLogger(__name__)


def best_recording_file(files: list[dict[str, Any]]) -> Optional[dict[str, Any]]:
    """Largest MP4 of the recording, or ``None`` when there is no video."""
    videos = [f for f in files if str(f.get("file_type", "")).upper() == "MP4"]
    if not videos:
        return None
    return max(videos, key=lambda f: f.get("file_size") or 0)


async def link_recording(recording: dict[str, Any], zoom: ZoomService) -> Optional[ClassSession]:
    """Attach a ``recording.completed`` payload object to its session.

    Files missing from the webhook body are fetched from the recordings API.
    Returns the updated session, or ``None`` when nothing could be linked.
    """
    meeting_id = str(recording.get("id") or "")
    if not meeting_id:
        return None
    class_session = await ClassSession.find_one({"zoom_meeting_id": meeting_id})
    if not class_session:
        logger.info("No session for Zoom meeting %s, recording ignored", meeting_id)
        return None

    best = best_recording_file(recording.get("recording_files") or [])
    share_url = recording.get("share_url")
    if best is None and zoom.is_configured:
        try:
            details = await zoom.get_recordings(meeting_id)
        except ZoomError as e:
            logger.warning("Recordings for meeting %s not fetched: %s", meeting_id, e)
            return None
        best = best_recording_file(details.get("recording_files") or [])
        share_url = share_url or details.get("share_url")
    if best is None:
        logger.info("Zoom meeting %s has no MP4 recording", meeting_id)
        return None

    class_session.recording_url = best.get("play_url") or share_url
    class_session.recording_ready_at = datetime.utcnow()
    class_session.recording_shared = True
    class_session.updated_at = class_session.recording_ready_at
    await class_session.save()
    logger.info("Recording linked to session %s (meeting %s)", class_session.id, meeting_id)
    return class_session
