"""System browser launcher.

The browser is started in its own session/process group so that Ctrl+C in
the terminal (which signals the CLI's process group) does not take the
browser down with it.
"""

from __future__ import annotations

import logging
import subprocess
import sys
import webbrowser

from nylas_cli.utils.errors import BrowserError

logger = logging.getLogger(__name__)


class Browser:
    """Opens URLs in the user's default browser."""

    def __init__(self, platform: str | None = None) -> None:
        self._platform = platform or sys.platform

    def _command(self, url: str) -> list[str]:
        if self._platform.startswith("win"):
            # Not "cmd /c start": cmd.exe splits the URL at every "&"
            return ["rundll32", "url.dll,FileProtocolHandler", url]
        if self._platform == "darwin":
            return ["open", url]
        return ["xdg-open", url]

    def open(self, url: str) -> None:
        """Open ``url`` detached from the CLI process.

        Raises:
            BrowserError: If neither the platform opener nor the
                ``webbrowser`` module could launch a browser.
        """
        command = self._command(url)
        kwargs: dict[str, object] = {
            "stdin": subprocess.DEVNULL,
            "stdout": subprocess.DEVNULL,
            "stderr": subprocess.DEVNULL,
        }
        if self._platform.startswith("win"):
            kwargs["creationflags"] = getattr(
                subprocess, "DETACHED_PROCESS", 0
            ) | getattr(subprocess, "CREATE_NEW_PROCESS_GROUP", 0)
        else:
            kwargs["start_new_session"] = True

        try:
            subprocess.Popen(command, **kwargs)  # noqa: S603
            logger.debug("Launched browser with %s", command[0])
            return
        except OSError as e:
            logger.debug("Browser opener %s failed: %s", command[0], e)

        if webbrowser.open(url):
            logger.debug("Launched browser via webbrowser module")
            return

        raise BrowserError(
            "Could not open a browser",
            details={"hint": "Open the URL manually"},
        )


__all__ = ["Browser"]
