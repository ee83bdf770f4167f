# ttc_fusion/core/frame_buffer.py
# Holds the last N frames; previous/current form the unit of work
from collections import deque
from typing import Deque, Optional

from ttc_fusion.types import Frame


class FrameBuffer:
    def __init__(self, maxlen: int = 2):
        if maxlen < 2:
            raise ValueError(f"maxlen must be >= 2, got {maxlen}")
        self._buf: Deque[Frame] = deque(maxlen=maxlen)

    def push(self, frame: Frame) -> None:
        self._buf.append(frame)

    def __len__(self) -> int:
        return len(self._buf)

    def is_ready(self) -> bool:
        return len(self._buf) >= 2

    def current(self) -> Optional[Frame]:
        return self._buf[-1] if self._buf else None

    def previous(self) -> Optional[Frame]:
        return self._buf[-2] if len(self._buf) >= 2 else None
