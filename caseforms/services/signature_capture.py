"""Freehand signature capture.

The pad records strokes as point lists and serialises them to a portable
SVG image wrapped in a ``data:`` URL. That string is the signature field's
value; drawing surfaces only need to feed points in.
"""

from __future__ import annotations

import base64
import re
from typing import Callable, Optional

DATA_URL_PREFIX = "data:image/svg+xml;base64,"

_POLYLINE_RE = re.compile(r'<polyline points="([^"]*)"')

Point = tuple[float, float]


def _fmt(value: float) -> str:
    text = f"{value:.1f}"
    return text[:-2] if text.endswith(".0") else text


class SignaturePad:
    def __init__(
        self,
        width: int = 400,
        height: int = 150,
        *,
        pen_color: str = "rgb(0, 0, 0)",
        background_color: str = "rgb(255, 255, 255)",
        on_change: Optional[Callable[[Optional[str]], None]] = None,
    ):
        self.width = width
        self.height = height
        self.pen_color = pen_color
        self.background_color = background_color
        self.on_change = on_change
        self._strokes: list[list[Point]] = []
        self._active: list[Point] | None = None

    def _clamp(self, x: float, y: float) -> Point:
        return (min(max(float(x), 0.0), float(self.width)), min(max(float(y), 0.0), float(self.height)))

    def begin_stroke(self, x: float, y: float) -> None:
        self._active = [self._clamp(x, y)]

    def add_point(self, x: float, y: float) -> None:
        if self._active is None:
            self.begin_stroke(x, y)
            return
        self._active.append(self._clamp(x, y))

    def end_stroke(self) -> str | None:
        if self._active is None:
            return None
        self._strokes.append(self._active)
        self._active = None
        value = self.to_data_url()
        if self.on_change is not None:
            self.on_change(value)
        return value

    def clear(self) -> None:
        self._strokes = []
        self._active = None
        if self.on_change is not None:
            self.on_change(None)

    def is_empty(self) -> bool:
        return not self._strokes

    @property
    def strokes(self) -> list[list[Point]]:
        return [list(stroke) for stroke in self._strokes]

    def to_svg(self) -> str:
        lines = [
            f'<svg xmlns="http://www.w3.org/2000/svg" width="{self.width}" height="{self.height}" viewBox="0 0 {self.width} {self.height}">',
            f'<rect width="100%" height="100%" fill="{self.background_color}"/>',
        ]
        for stroke in self._strokes:
            points = " ".join(f"{_fmt(x)},{_fmt(y)}" for x, y in stroke)
            lines.append(
                f'<polyline points="{points}" fill="none" stroke="{self.pen_color}" stroke-width="2" stroke-linecap="round" stroke-linejoin="round"/>'
            )
        lines.append("</svg>")
        return "".join(lines)

    def to_data_url(self) -> str:
        return DATA_URL_PREFIX + base64.b64encode(self.to_svg().encode("utf-8")).decode("ascii")

    def from_data_url(self, value: str) -> None:
        """Restore strokes from a value produced by :meth:`to_data_url`."""
        if not str(value or "").startswith(DATA_URL_PREFIX):
            raise ValueError("Unsupported signature encoding")
        svg = base64.b64decode(value[len(DATA_URL_PREFIX):]).decode("utf-8")
        strokes: list[list[Point]] = []
        for raw in _POLYLINE_RE.findall(svg):
            stroke: list[Point] = []
            for pair in raw.split():
                x, _, y = pair.partition(",")
                stroke.append(self._clamp(float(x), float(y)))
            if stroke:
                strokes.append(stroke)
        self._strokes = strokes
        self._active = None
