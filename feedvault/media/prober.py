"""
Reads the duration of downloaded media files.
"""

import asyncio
import logging
from pathlib import Path

from mutagen import File as MutagenFile
from mutagen import MutagenError

from feedvault.exceptions import MediaProbeError

log = logging.getLogger(__name__)


class MediaProber:
    """
    Probes media duration with mutagen in a worker thread. Callers are expected
    to hold a slot from the ResourceSlotPool while probing.
    """

    async def probe_duration(self, file_path: Path) -> float:
        """
        Args:
            file_path: Path to a video or audio file.

        Returns:
            The duration in seconds.

        Raises:
            MediaProbeError: If the file cannot be parsed or reports no length.
        """
        return await asyncio.to_thread(self._probe_sync, str(file_path))

    @staticmethod
    def _probe_sync(file_path: str) -> float:
        try:
            media = MutagenFile(file_path)
        except (MutagenError, OSError) as e:
            raise MediaProbeError(f"Cannot read '{file_path}': {e}") from e

        if media is None or media.info is None:
            raise MediaProbeError(f"Unrecognized media format: '{file_path}'")

        length = getattr(media.info, "length", 0) or 0
        if length <= 0:
            raise MediaProbeError(f"No valid stream length in '{file_path}'")
        log.debug(f"Probed '{file_path}': {length:.2f}s")
        return float(length)
