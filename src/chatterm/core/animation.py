"""Matrix-rain idle animation with a bouncing logo.

The ticker paints through a callback and checks ``is_active`` at the top of
every tick and again right before painting, so ``stop()`` called mid-tick
never lets one more frame through.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Callable, Optional

logger = logging.getLogger(__name__)

LOGO = (
    "┌──────────────────┐",
    "│   c h a t t e r m│",
    "│  ▸ :help  ▸ h    │",
    "└──────────────────┘",
)

# (style, char, probability)
DEPTHS = (
    ("bright_green", "1", 0.3),
    ("green", "0", 0.5),
    ("white", "1", 0.2),
)

TRAIL_LENGTH = 8


@dataclass
class _Glyph:
    char: str
    style: str
    speed: float
    blink: bool


@dataclass
class _Column:
    x: int
    y: float
    glyphs: list[_Glyph] = field(default_factory=list)


@dataclass
class _Logo:
    x: float = 0.0
    y: float = 0.0
    vx: float = 0.35
    vy: float = 0.35
    intensity: float = 0.0
    rising: bool = True


class BackgroundAnimation:
    """Cooperative ~20 fps ticker painting the MATRIX view."""

    def __init__(
        self,
        paint: Callable[[str], None],
        clear: Callable[[], None],
        size: Callable[[], tuple[int, int]],
        interval: float = 0.05,
        density: float = 0.5,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._paint = paint
        self._clear = clear
        self._size = size
        self.interval = interval
        self.density = density
        self._rng = rng or random.Random()
        self._active = False
        self._task: Optional[asyncio.Task] = None
        self._columns: list[_Column] = []
        self._logo = _Logo()
        self._dims: tuple[int, int] = (0, 0)
        self.frames = 0

    @property
    def is_active(self) -> bool:
        return self._active

    def start(self) -> None:
        """Start ticking. No-op while already running."""
        if self._active:
            return
        self._active = True
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.debug("Animation started")

    def stop(self) -> None:
        """Halt the ticker and clear the surface."""
        was_active = self._active
        self._active = False
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
        if was_active:
            self._clear()
            logger.debug("Animation stopped")

    async def _run(self) -> None:
        while self._active:
            frame = self.render_frame()
            if not self._active:
                return
            if frame:
                self._paint(frame)
                self.frames += 1
            await asyncio.sleep(self.interval)

    def render_frame(self) -> str:
        """Advance one tick and return the frame as Rich markup."""
        width, height = self._size()
        if width <= 0 or height <= 0:
            return ""
        if (width, height) != self._dims or not self._columns:
            self._reset(width, height)

        grid = [[" "] * width for _ in range(height)]
        for column in self._columns:
            self._advance(column, grid, height)
        return self._compose(grid, width, height)

    def _reset(self, width: int, height: int) -> None:
        self._dims = (width, height)
        count = max(1, int(width * self.density))
        self._columns = [
            _Column(
                x=self._rng.randrange(width),
                y=self._rng.random() * height,
                glyphs=[self._glyph() for _ in range(TRAIL_LENGTH)],
            )
            for _ in range(count)
        ]

    def _glyph(self) -> _Glyph:
        roll = self._rng.random()
        acc = 0.0
        style, char = DEPTHS[0][0], DEPTHS[0][1]
        for depth_style, depth_char, probability in DEPTHS:
            acc += probability
            if roll < acc:
                style, char = depth_style, depth_char
                break
        return _Glyph(
            char=char if self._rng.random() > 0.5 else "0",
            style=style,
            speed=self._rng.random() * 0.5 + 0.2,
            blink=self._rng.random() > 0.9,
        )

    def _advance(self, column: _Column, grid: list[list[str]], height: int) -> None:
        column.y += column.glyphs[0].speed
        if column.y > height * 1.2:
            column.y = -TRAIL_LENGTH
            column.glyphs = [self._glyph() for _ in range(TRAIL_LENGTH)]
        for i, glyph in enumerate(column.glyphs):
            y = int(column.y + i)
            if 0 <= y < height:
                char = "1" if glyph.blink and self._rng.random() > 0.8 else glyph.char
                grid[y][column.x] = f"[{glyph.style}]{char}[/]"

    def _compose(self, grid: list[list[str]], width: int, height: int) -> str:
        logo_w = max(len(line) for line in LOGO)
        logo_h = len(LOGO)
        fits = logo_w < width and logo_h < height
        if fits:
            self._bounce(width, height, logo_w, logo_h)
            style = self._logo_style()
            top, left = int(self._logo.y), int(self._logo.x)
            for row, line in enumerate(LOGO):
                cells = grid[top + row]
                for col, char in enumerate(line):
                    cells[left + col] = f"[{style}]{char}[/]"
        return "\n".join("".join(row) for row in grid)

    def _bounce(self, width: int, height: int, logo_w: int, logo_h: int) -> None:
        logo = self._logo
        logo.x += logo.vx
        logo.y += logo.vy
        if logo.x <= 0 or logo.x + logo_w >= width:
            logo.vx = -logo.vx
        if logo.y <= 0 or logo.y + logo_h >= height:
            logo.vy = -logo.vy
        logo.x = max(0.0, min(logo.x, float(width - logo_w)))
        logo.y = max(0.0, min(logo.y, float(height - logo_h)))

        step = 0.05
        if logo.rising:
            logo.intensity = min(1.0, logo.intensity + step)
            logo.rising = logo.intensity < 1.0
        else:
            logo.intensity = max(0.0, logo.intensity - step)
            logo.rising = logo.intensity <= 0.0

    def _logo_style(self) -> str:
        if self._logo.intensity > 0.8:
            return "bold white"
        if self._logo.intensity > 0.5:
            return "bold bright_green"
        return "green"
