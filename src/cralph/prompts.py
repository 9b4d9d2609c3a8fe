"""Numbered terminal menus used by the interactive CLI flow."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass

from .cancellation import CANCELLED, CancellationToken
from .errors import CancellationError

InputFunc = Callable[[str], str]
OutputFunc = Callable[[str], None]

CONTROLS = "Enter a number (comma separated for multiple) • Enter accepts the default • Ctrl+C exits"


@dataclass(slots=True)
class Option:
    label: str
    value: str
    hint: str | None = None


class Prompter:
    """Reads answers with ``input`` and turns aborted reads into cancellation.

    Every prompt checks the token before asking and after answering, so a
    shutdown requested mid-prompt never leads to further work.
    """

    def __init__(
        self,
        token: CancellationToken,
        *,
        input_func: InputFunc = input,
        output_func: OutputFunc = print,
    ) -> None:
        self.token = token
        self.input_func = input_func
        self.output_func = output_func

    def select(self, message: str, options: Sequence[Option], *, initial: str | None = None) -> str:
        self.token.raise_if_cancelled()
        default_index = _index_of(options, initial)
        self._render(message, options, {default_index} if default_index is not None else set())
        while True:
            answer = self._read("> ")
            if not answer and default_index is not None:
                return options[default_index].value
            indices = _parse_indices(answer, len(options))
            if indices is not None and len(indices) == 1:
                return options[indices[0]].value
            self.output_func("Please choose one of the listed numbers.")

    def multiselect(
        self,
        message: str,
        options: Sequence[Option],
        *,
        initial: Sequence[str] = (),
    ) -> list[str]:
        self.token.raise_if_cancelled()
        defaults = [idx for idx, option in enumerate(options) if option.value in initial]
        self._render(message, options, set(defaults))
        while True:
            answer = self._read("> ")
            if not answer:
                if not defaults:
                    raise CancellationError()
                return [options[idx].value for idx in defaults]
            indices = _parse_indices(answer, len(options))
            if indices:
                return [options[idx].value for idx in indices]
            self.output_func("Please choose from the listed numbers.")

    def confirm(self, message: str, *, default: bool = True) -> bool:
        self.token.raise_if_cancelled()
        suffix = "[Y/n]" if default else "[y/N]"
        while True:
            answer = self._read(f"{message} {suffix}: ")
            normalized = answer.lower()
            if not normalized:
                return default
            if normalized in {"y", "yes"}:
                return True
            if normalized in {"n", "no"}:
                return False
            self.output_func("Please answer y or n.")

    def _read(self, prompt: str) -> str:
        answer: object
        try:
            answer = self.input_func(prompt)
        except EOFError:
            answer = CANCELLED
        self.token.raise_if_cancelled(answer)
        return str(answer).strip()

    def _render(self, message: str, options: Sequence[Option], marked: set[int]) -> None:
        self.output_func(CONTROLS)
        self.output_func(message)
        for idx, option in enumerate(options):
            marker = "*" if idx in marked else " "
            hint = f" ({option.hint})" if option.hint else ""
            self.output_func(f" {marker} {idx + 1}. {option.label}{hint}")


def _index_of(options: Sequence[Option], value: str | None) -> int | None:
    if value is None:
        return None
    for idx, option in enumerate(options):
        if option.value == value:
            return idx
    return None


def _parse_indices(answer: str, option_count: int) -> list[int] | None:
    indices: list[int] = []
    for part in answer.replace(" ", ",").split(","):
        if not part:
            continue
        try:
            number = int(part)
        except ValueError:
            return None
        if number < 1 or number > option_count:
            return None
        if number - 1 not in indices:
            indices.append(number - 1)
    return indices
