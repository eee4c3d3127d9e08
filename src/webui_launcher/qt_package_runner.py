"""
Running an installed package.

`PackageRunner` starts the launch command of a package with the python of
its virtual environment and turns the console output into lines. Each line
is offered to the package, which reports when its web UI is ready.
"""

import os
from collections.abc import Sequence
from logging import getLogger
from pathlib import Path

from qtpy.QtCore import (
    QObject,
    QProcess,
    QProcessEnvironment,
    QTimer,
    Signal,
)

from webui_launcher.packages.base import BasePackage

log = getLogger(__name__)

# time given to a package to exit before it is killed
STOP_GRACE_PERIOD_MS = 5000


class PackageRunner(QObject):
    """Run one package at a time."""

    # emitted for every line of console output, without the terminator
    consoleOutput = Signal(str)

    # emitted once per run with the address of the web UI (may be empty)
    startupComplete = Signal(str)

    # emitted with the exit code when the process is gone
    exited = Signal(int)

    def __init__(self, parent: QObject | None = None) -> None:
        super().__init__(parent)
        self._process: QProcess | None = None
        self._package: BasePackage | None = None
        self._buffer = b''
        self._startup_reported = False
        self._kill_timer = QTimer(self)
        self._kill_timer.setSingleShot(True)
        self._kill_timer.setInterval(STOP_GRACE_PERIOD_MS)
        self._kill_timer.timeout.connect(self._kill)

    # -------------------------- Public API ----------------------------------
    @property
    def package(self) -> BasePackage | None:
        return self._package

    @property
    def web_url(self) -> str | None:
        return self._package.web_url if self._package is not None else None

    def is_running(self) -> bool:
        return (
            self._process is not None
            and self._process.state() != QProcess.NotRunning
        )

    def start(
        self,
        package: BasePackage,
        install_path: str | Path,
        arguments: Sequence[str],
        python: str | Path | None = None,
    ) -> None:
        """Launch `package` from `install_path`.

        Parameters
        ----------
        package : BasePackage
            The package scraping the console output.
        install_path : str or Path
            Root of the installed package, used as working directory.
        arguments : sequence of str
            Arguments of the interpreter, usually from
            `BasePackage.launch_arguments`.
        python : str or Path, optional
            Interpreter to use, the python of the package venv by default.

        Raises
        ------
        RuntimeError
            If a package is already running.
        FileNotFoundError
            If the package has no virtual environment.
        """
        if self.is_running():
            raise RuntimeError(
                f'{self._package.display_name} is already running'
            )
        install_path = Path(install_path)
        venv = package.venv(install_path)
        if python is None:
            if not venv.exists():
                raise FileNotFoundError(
                    f'No virtual environment found at {venv.root}'
                )
            python = venv.python_path

        package.web_url = None
        self._package = package
        self._buffer = b''
        self._startup_reported = False

        process = QProcess(self)
        process.setProcessChannelMode(QProcess.MergedChannels)
        process.setWorkingDirectory(str(install_path))
        env = QProcessEnvironment()
        for key, value in venv.environment().items():
            env.insert(key, value)
        process.setProcessEnvironment(env)
        process.setProgram(str(python))
        process.setArguments([str(arg) for arg in arguments])
        process.readyReadStandardOutput.connect(self._on_output_ready)
        process.finished.connect(self._on_process_finished)
        process.errorOccurred.connect(self._on_error_occurred)
        self._process = process

        log.info(
            "Starting '%s' with args %s",
            process.program(),
            process.arguments(),
        )
        process.start()

    def stop(self) -> None:
        """Ask the running package to exit, killing it if it does not."""
        if not self.is_running():
            return
        log.info('Stopping %s', self._package.display_name)
        if os.name == 'nt':
            self._process.kill()
        else:
            self._process.terminate()
            self._kill_timer.start()

    def waitForFinished(self, msecs: int = 30000) -> bool:
        if self._process is None:
            return True
        return self._process.waitForFinished(msecs)

    # -------------------------- Private methods -----------------------------
    def _kill(self) -> None:
        if self.is_running():
            log.warning(
                '%s did not exit in time, killing it',
                self._package.display_name,
            )
            self._process.kill()

    def _emit_line(self, line: str) -> None:
        self.consoleOutput.emit(line)
        if self._startup_reported:
            return
        if self._package.handle_console_line(line):
            self._startup_reported = True
            log.info('%s is ready at %s', self._package.name, self.web_url)
            self.startupComplete.emit(self.web_url or '')

    def _split_lines(self, final: bool = False) -> None:
        data, keep = self._buffer, b''
        # a trailing \r may be the first half of \r\n
        if not final and data.endswith(b'\r'):
            data, keep = data[:-1], b'\r'
        data = data.replace(b'\r\n', b'\n').replace(b'\r', b'\n')
        *lines, rest = data.split(b'\n')
        if final and rest:
            lines.append(rest)
            rest = b''
        self._buffer = rest + keep
        for line in lines:
            self._emit_line(line.decode(errors='replace'))

    def _on_output_ready(self) -> None:
        if self._process is None:
            return
        self._buffer += self._process.readAllStandardOutput().data()
        self._split_lines()

    def _on_error_occurred(self, error: QProcess.ProcessError) -> None:
        if error == QProcess.ProcessError.FailedToStart:
            log.error('Failed to start %s', self._process.program())
            self.consoleOutput.emit(
                f'Failed to start {self._process.program()}'
            )
            self.exited.emit(-1)
        else:
            log.debug('Process error: %s', error)

    def _on_process_finished(
        self, exit_code: int, exit_status: QProcess.ExitStatus
    ) -> None:
        self._kill_timer.stop()
        self._on_output_ready()
        self._split_lines(final=True)
        log.debug(
            'Venv process exited with code %s (%s)', exit_code, exit_status
        )
        self.consoleOutput.emit(f'Venv process exited with code {exit_code}')
        self.exited.emit(exit_code)
