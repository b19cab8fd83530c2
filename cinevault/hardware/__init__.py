"""
Hardware encoder detection for Cinevault.

Detection is a hint: a render node or GPU device being present does not
guarantee the encoder works, so the transcode engine falls back down the
priority chain at runtime. Nothing here is cached; every call re-inspects
the host so hot-plugged or removed devices are picked up.
"""

import logging
import shutil
from pathlib import Path
from typing import Callable, Dict, List, Optional

from .models import (
    EncoderChoice,
    EncoderCapability,
    ENCODER_PRIORITY,
    ENCODER_NAMES,
    INTEL_VENDOR_ID,
)

logger = logging.getLogger(__name__)

# A probe answers "is this encoder plausibly usable on this host?"
HardwareProbe = Callable[[], bool]


def _render_node_vendor(render_node: Path) -> Optional[str]:
    """Read the PCI vendor id of the DRM device behind a render node."""
    vendor_file = Path("/sys/class/drm") / render_node.name / "device" / "vendor"
    if not vendor_file.exists():
        return None
    return vendor_file.read_text().strip().lower()


class HardwareEncoderSelector:
    """Ranks the encoders usable on this host: vaapi > qsv > nvenc > software."""

    def __init__(self, hw_config=None, probes: Optional[Dict[EncoderChoice, HardwareProbe]] = None):
        if hw_config is None:
            from ..config import get_config
            hw_config = get_config().hardware
        self.hw_config = hw_config
        self._probes: Dict[EncoderChoice, HardwareProbe] = {
            EncoderChoice.VAAPI: self._has_vaapi,
            EncoderChoice.QSV: self._has_qsv,
            EncoderChoice.NVENC: self._has_nvenc,
        }
        if probes:
            self._probes.update(probes)

    def _has_vaapi(self) -> bool:
        return Path(self.hw_config.vaapi_device).exists()

    def _has_qsv(self) -> bool:
        render_node = Path(self.hw_config.vaapi_device)
        if not render_node.exists():
            return False
        return _render_node_vendor(render_node) == INTEL_VENDOR_ID

    def _has_nvenc(self) -> bool:
        if Path(self.hw_config.nvidia_device).exists():
            return True
        return shutil.which("nvidia-smi") is not None

    def detect(self) -> List[EncoderCapability]:
        """Inspect the host and report every encoder in priority order."""
        capabilities: List[EncoderCapability] = []
        for choice in ENCODER_PRIORITY:
            if choice == EncoderChoice.SOFTWARE:
                capabilities.append(EncoderCapability(choice=choice, available=True))
                continue

            if not self.hw_config.prefer_hw_accel:
                capabilities.append(
                    EncoderCapability(choice=choice, available=False, reason="hardware acceleration disabled")
                )
                continue

            probe = self._probes.get(choice)
            try:
                available = bool(probe()) if probe else False
                reason = "" if available else "not detected"
            except Exception as e:
                logger.warning(f"[Hardware] {ENCODER_NAMES[choice]} probe failed, treating as absent: {e}")
                available = False
                reason = f"probe failed: {e}"

            device = self.hw_config.vaapi_device if choice in (EncoderChoice.VAAPI, EncoderChoice.QSV) else None
            capabilities.append(
                EncoderCapability(choice=choice, available=available, device_path=device, reason=reason)
            )
        return capabilities

    def available(self) -> List[EncoderChoice]:
        """Usable choices, highest priority first. Always ends with software."""
        return [cap.choice for cap in self.detect() if cap.available]

    def select(self) -> EncoderChoice:
        choice = self.available()[0]
        logger.debug(f"[Hardware] Selected encoder: {ENCODER_NAMES[choice]}")
        return choice

    def next_after(self, choice: EncoderChoice) -> Optional[EncoderChoice]:
        """The next lower available choice, or None once software has been tried."""
        if choice == EncoderChoice.SOFTWARE:
            return None
        rank = ENCODER_PRIORITY.index(choice)
        for candidate in self.available():
            if ENCODER_PRIORITY.index(candidate) > rank:
                return candidate
        return EncoderChoice.SOFTWARE


__all__ = [
    "EncoderChoice",
    "EncoderCapability",
    "ENCODER_PRIORITY",
    "ENCODER_NAMES",
    "HardwareEncoderSelector",
    "HardwareProbe",
]
