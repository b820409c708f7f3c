"""Best-effort capture of the currently selected text via the clipboard."""

from __future__ import annotations

import logging
import subprocess
import time
from contextlib import contextmanager
from typing import Callable, Iterator, Optional, Protocol

log = logging.getLogger(__name__)


class Clipboard(Protocol):
    def change_count(self) -> int:
        ...

    def read(self) -> Optional[str]:
        ...

    def write(self, text: str) -> None:
        ...

    def clear(self) -> None:
        ...


class MacPasteboard:
    """The general macOS pasteboard."""

    def __init__(self) -> None:
        try:
            from AppKit import NSPasteboard, NSPasteboardTypeString  # type: ignore
        except Exception as exc:  # pragma: no cover - optional dependency
            raise RuntimeError(
                "The `pyobjc` packages are required to access the clipboard. Install fluency[mac]."
            ) from exc
        self._pasteboard = NSPasteboard.generalPasteboard()
        self._type = NSPasteboardTypeString

    def change_count(self) -> int:  # pragma: no cover - requires macOS
        return int(self._pasteboard.changeCount())

    def read(self) -> Optional[str]:  # pragma: no cover - requires macOS
        value = self._pasteboard.stringForType_(self._type)
        return str(value) if value is not None else None

    def write(self, text: str) -> None:  # pragma: no cover - requires macOS
        self._pasteboard.clearContents()
        self._pasteboard.setString_forType_(text, self._type)

    def clear(self) -> None:  # pragma: no cover - requires macOS
        self._pasteboard.clearContents()


def send_copy_keystroke() -> None:  # pragma: no cover - requires macOS
    subprocess.run(
        [
            "/usr/bin/osascript",
            "-e",
            'tell application "System Events" to keystroke "c" using {command down}',
        ],
        check=True,
    )


@contextmanager
def preserved_clipboard(clipboard: Clipboard) -> Iterator[Optional[str]]:
    """Restore the clipboard contents on exit, whatever happens inside."""
    previous = clipboard.read()
    try:
        yield previous
    finally:
        try:
            if previous is None:
                clipboard.clear()
            else:
                clipboard.write(previous)
        except Exception as exc:  # noqa: BLE001 - restoration is best effort
            log.warning("Failed to restore clipboard: %s", exc)


def capture_selection(
    clipboard: Clipboard,
    trigger_copy: Callable[[], None] = send_copy_keystroke,
    timeout: float = 0.25,
    poll_interval: float = 0.02,
    sleep: Callable[[float], None] = time.sleep,
) -> Optional[str]:
    """Copy the current selection and return it, or None when nothing was selected."""
    with preserved_clipboard(clipboard):
        clipboard.clear()
        baseline = clipboard.change_count()
        try:
            trigger_copy()
        except (OSError, subprocess.CalledProcessError) as exc:
            log.debug("Copy keystroke failed: %s", exc)
            return None
        deadline = time.monotonic() + timeout
        while True:
            if clipboard.change_count() != baseline:
                text = clipboard.read()
                return text if text else None
            if time.monotonic() >= deadline:
                return None
            sleep(poll_interval)
