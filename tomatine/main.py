from __future__ import annotations

"""Консольная точка входа таймера Tomatine.

Модуль подключает хранилище, Qt-движок таймера и машину состояний сессии,
предлагает восстановить прерванную сессию, затем проводит один рабочий цикл
и завершается после перерыва.
"""

import logging
import signal
import sys

from PyQt6.QtGui import QGuiApplication

from tomatine.config import Settings, get_settings
from tomatine.core.models import TimerMode, format_remaining
from tomatine.core.session import TimerSession
from tomatine.core.timer import create_timer_engine
from tomatine.core.visibility import QtApplicationVisibility
from tomatine.data.base import StorageError
from tomatine.data.storage import Storage

logger = logging.getLogger("tomatine")


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        force=True,
    )


def confirm(question: str) -> bool:
    """Asks a yes/no question on the console; anything but 'y' means no."""
    try:
        answer = input(f"{question} [y/N] ")
    except EOFError:
        return False
    return answer.strip().lower() in {"y", "yes"}


def main() -> int:
    """Creates the application dependencies and runs the Qt event loop."""
    settings = get_settings()
    configure_logging(settings)

    app = QGuiApplication(sys.argv)
    signal.signal(signal.SIGINT, signal.SIG_DFL)

    storage = Storage(settings.db_path)
    storage.init_db()

    visibility = QtApplicationVisibility(app)
    engine = create_timer_engine(
        update_interval_ms=settings.tick_interval_ms,
        drift_threshold_ms=settings.drift_threshold_ms,
        frame_interval_ms=settings.frame_interval_ms or None,
        visibility=visibility,
    )
    session = TimerSession(storage, engine)

    session.remaining_changed.connect(
        lambda remaining: logger.info(f"{session.mode.value}: {format_remaining(remaining)}")
    )
    session.drift_detected.connect(lambda drift: logger.warning(f"Clock jumped by {drift}ms"))
    session.recovery_available.connect(
        lambda: logger.info(f"Interrupted {session.recoverable.mode.value} session found")
    )

    def on_phase_completed(mode: str) -> None:
        if mode == TimerMode.BREAK.value:
            logger.info("Break is over, see you next session")
            app.quit()

    session.phase_completed.connect(on_phase_completed)

    try:
        recovered = False
        if session.check_recovery():
            if confirm("An interrupted session was found. Resume it?"):
                recovered = session.recover_session()
            else:
                session.discard_recovery()
        if not recovered:
            session.start_session()
        elif session.mode == TimerMode.IDLE:
            logger.info("The recovered session had already finished")
            engine.destroy()
            return 0
    except StorageError as exc:
        logger.error(f"Cannot start the timer: {exc}")
        engine.destroy()
        return 1

    try:
        return app.exec()
    finally:
        session.close()
        engine.destroy()
        visibility.close()


if __name__ == "__main__":
    raise SystemExit(main())
