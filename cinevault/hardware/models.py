"""
Hardware encoder models for Cinevault
"""

from typing import Dict, List, Optional, Any
from dataclasses import dataclass
from enum import Enum


class EncoderChoice(str, Enum):
    VAAPI = "vaapi"
    QSV = "qsv"
    NVENC = "nvenc"
    SOFTWARE = "software"

    @property
    def is_hardware(self) -> bool:
        return self != EncoderChoice.SOFTWARE


# Highest priority first; software is always last and always available
ENCODER_PRIORITY: List[EncoderChoice] = [
    EncoderChoice.VAAPI,
    EncoderChoice.QSV,
    EncoderChoice.NVENC,
    EncoderChoice.SOFTWARE,
]

# FFmpeg encoder name used for each choice
ENCODER_NAMES: Dict[EncoderChoice, str] = {
    EncoderChoice.VAAPI: "h264_vaapi",
    EncoderChoice.QSV: "h264_qsv",
    EncoderChoice.NVENC: "h264_nvenc",
    EncoderChoice.SOFTWARE: "libx264",
}

INTEL_VENDOR_ID = "0x8086"


@dataclass
class EncoderCapability:
    choice: EncoderChoice
    available: bool
    device_path: Optional[str] = None  # Render node or GPU device the hint came from
    reason: str = ""

    @property
    def encoder(self) -> str:
        return ENCODER_NAMES[self.choice]

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "choice": self.choice.value,
            "encoder": self.encoder,
            "available": self.available,
        }
        if self.device_path:
            result["device_path"] = self.device_path
        if self.reason:
            result["reason"] = self.reason
        return result
