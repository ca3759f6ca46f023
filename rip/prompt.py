"""Confirmation channel: yes/no questions asked by the graveyard core.

The core never reads from the terminal itself. It is handed a
:class:`ConfirmationChannel` and only ever calls :meth:`~ConfirmationChannel.ask`.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Callable, TextIO

import click


class UserAbort(Exception):
    """Raised when the user answers ``q`` to stop the whole batch."""


def yes_no_quit(stream: TextIO) -> bool:
    """Read one answer line from *stream* and judge its first character.

    ``y``/``Y`` is yes, ``q``/``Q`` raises :class:`UserAbort`. End of input
    and every other answer count as no, so non-interactive runs never hang
    or destroy anything by accident.
    """
    char = stream.readline()[:1]
    if char in ("y", "Y"):
        return True
    if char in ("q", "Q"):
        raise UserAbort("User requested to quit")
    return False


class ConfirmationChannel(ABC):
    """Something that can answer yes/no questions."""

    @abstractmethod
    def ask(self, prompt: str) -> bool:
        """Return True only on an explicit yes.

        May raise :class:`UserAbort` to stop everything.
        """


class StreamConfirmation(ConfirmationChannel):
    """Prompt on the output channel and read the answer from a text stream.

    Parameters
    ----------
    stream:
        Where answers come from. Defaults to click's stdin text stream,
        resolved lazily so ``CliRunner`` input is honoured.
    echo:
        Output channel used to print the prompt.
    """

    def __init__(
        self,
        stream: TextIO | None = None,
        echo: Callable[..., None] = click.echo,
    ) -> None:
        self._stream = stream
        self._echo = echo

    def ask(self, prompt: str) -> bool:
        self._echo(f"{prompt} (y/N) ", nl=False)
        stream = self._stream or click.get_text_stream("stdin")
        answer = yes_no_quit(stream)
        if not stream.isatty():
            # Piped answers are not echoed back by a terminal
            self._echo("")
        return answer


class FixedConfirmation(ConfirmationChannel):
    """Answer every question the same way, still showing the prompt."""

    def __init__(self, answer: bool, echo: Callable[..., None] = click.echo) -> None:
        self.answer = answer
        self._echo = echo

    def ask(self, prompt: str) -> bool:
        self._echo(f"{prompt} (y/N) {'y' if self.answer else 'n'}")
        return self.answer
