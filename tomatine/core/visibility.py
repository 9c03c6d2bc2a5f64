from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable

from PyQt6.QtCore import QObject, Qt, pyqtSignal
from PyQt6.QtGui import QGuiApplication

if TYPE_CHECKING:
    from tomatine.core.timer import TimerEngine

logger = logging.getLogger(__name__)

_VISIBLE_APPLICATION_STATES = {
    Qt.ApplicationState.ApplicationActive,
    Qt.ApplicationState.ApplicationInactive,
}


class VisibilitySource(QObject):
    """Boolean "is the host visible" signal with a change event."""

    visibility_changed = pyqtSignal(bool)

    def __init__(self, visible: bool = True) -> None:
        super().__init__()
        self._visible = visible

    def is_visible(self) -> bool:
        return self._visible

    def set_visible(self, visible: bool) -> None:
        if visible == self._visible:
            return
        self._visible = visible
        self.visibility_changed.emit(visible)


class QtApplicationVisibility(VisibilitySource):
    """Tracks ``QGuiApplication.applicationState``; hidden and suspended count as not visible."""

    def __init__(self, app: QGuiApplication) -> None:
        super().__init__(visible=app.applicationState() in _VISIBLE_APPLICATION_STATES)
        self._app = app
        app.applicationStateChanged.connect(self._on_application_state_changed)

    def close(self) -> None:
        self._app.applicationStateChanged.disconnect(self._on_application_state_changed)

    def _on_application_state_changed(self, state: Qt.ApplicationState) -> None:
        self.set_visible(state in _VISIBLE_APPLICATION_STATES)


class VisibilityCoordinator:
    """Switches the engine's scheduling strategy as the host is hidden or shown.

    Extra listeners are told about every change after the engine has been
    switched, so they always see the engine's post-switch state.
    """

    def __init__(self, source: VisibilitySource, engine: TimerEngine) -> None:
        self._source = source
        self._engine = engine
        self._listeners: list[Callable[[bool], None]] = []
        self._attached = False

    @property
    def is_visible(self) -> bool:
        return self._source.is_visible()

    def attach(self) -> None:
        if self._attached:
            return
        self._source.visibility_changed.connect(self._on_visibility_changed)
        self._attached = True
        self._engine.set_visible(self._source.is_visible())

    def detach(self) -> None:
        if not self._attached:
            return
        self._source.visibility_changed.disconnect(self._on_visibility_changed)
        self._attached = False
        self._listeners.clear()

    def add_listener(self, listener: Callable[[bool], None]) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Callable[[bool], None]) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _on_visibility_changed(self, visible: bool) -> None:
        logger.debug(f"Host visibility changed: visible={visible}")
        self._engine.set_visible(visible)
        for listener in list(self._listeners):
            try:
                listener(visible)
            except Exception:
                logger.exception("Visibility listener failed")
