"""Step through the last turn's output one part at a time."""

from __future__ import annotations

import asyncio
from typing import Any, Callable

from prompt_toolkit.input import Input, create_input
from prompt_toolkit.keys import Keys

from ..services.turn import TurnState
from . import ansi
from .renderer import TurnRenderer, _stdout_write
from .wrap import wrap_text

# Delay before a lone ESC is taken as a key rather than a sequence start
_ESCAPE_FLUSH = 0.05

NO_PAGES = "No parts to display yet."


def build_pages(turn: TurnState, renderer: TurnRenderer, width: int) -> list[str]:
    """One page per non-blank part, formatted as the detailed view shows it."""
    return [renderer.format_part(part, width, detailed=True) for part in turn.parts if part.text.strip()]


class PartPager:
    """Shows one page at a time under a footer prompt.

    Space advances and finishes after the last page; Escape or Ctrl+C cancels.
    """

    def __init__(self, pages: list[str], width: int, write: Callable[[str], Any] | None = None) -> None:
        self.pages = pages
        self.width = width
        self.index = 0
        self.done = False
        self.cancelled = False
        self._write = write or _stdout_write

    def footer(self) -> str:
        return (
            f"{ansi.BRIGHT_BLACK}--- Part {self.index + 1} of {len(self.pages)}; "
            f"press SPACE to advance or ESC to cancel ---{ansi.RESET}"
        )

    def show(self) -> None:
        if self.index == 0:
            self._write(ansi.CURSOR_HIDE)
        else:
            self._write(f"\r{ansi.CLEAR_LINE}")
        body = "\n".join(wrap_text(self.pages[self.index], self.width))
        self._write(f"{body}\n\n{self.footer()}")

    def handle_key(self, key: str) -> None:
        if self.done:
            return
        if key == " ":
            self.index += 1
            if self.index < len(self.pages):
                self.show()
                return
            self._write(f"\r{ansi.CLEAR_LINE}{ansi.CURSOR_SHOW}\n")
            self.done = True
        elif key in (Keys.Escape, Keys.ControlC):
            self._write(f"\r{ansi.CLEAR_LINE}{ansi.CURSOR_SHOW}{ansi.BRIGHT_BLACK}Cancelled{ansi.RESET}\n\n")
            self.done = True
            self.cancelled = True


async def run_pager(pager: PartPager, input_factory: Callable[[], Input] = create_input) -> None:
    """Show the first page and feed key presses to ``pager`` until it is done."""
    if not pager.pages:
        return
    loop = asyncio.get_running_loop()
    finished = asyncio.Event()
    term_input = input_factory()

    def _handle(key_presses: list[Any]) -> None:
        for key_press in key_presses:
            pager.handle_key(key_press.key)
            if pager.done:
                finished.set()
                return

    def _keys_ready() -> None:
        _handle(term_input.read_keys())
        loop.call_later(_ESCAPE_FLUSH, lambda: _handle(term_input.flush_keys()))

    pager.show()
    with term_input.raw_mode(), term_input.attach(_keys_ready):
        await finished.wait()
