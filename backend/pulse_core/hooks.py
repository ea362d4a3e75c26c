from __future__ import annotations

from typing import Callable

from .models import Session

DetachHook = Callable[[Session], None]


class HookRunner:
    def __init__(self) -> None:
        self._before_detach: list[DetachHook] = []

    def add_before_detach(self, hook: DetachHook) -> None:
        self._before_detach.append(hook)

    def run_before_detach(self, session: Session) -> None:
        for hook in self._before_detach:
            hook(session)
