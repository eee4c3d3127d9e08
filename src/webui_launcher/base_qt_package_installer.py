"""Tool-agnostic installation logic for the launcher.

The main object is `InstallerQueue`, a `QObject` that runs `QProcess`
jobs one after the other.

The queued jobs are represented by a `deque` of `*InstallerTool` dataclasses
that contain the executable path, arguments and environment modifications.

Available actions for each tool are `install`, `uninstall`, `upgrade`,
`checkout` and `cancel`. Jobs sharing a `group` form a pipeline: when one of
them fails, the rest of the group is dropped from the queue.
"""

import atexit
import contextlib
import os
import sys
from collections import deque
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from enum import StrEnum, auto
from functools import cached_property
from logging import getLogger
from pathlib import Path
from subprocess import run
from tempfile import NamedTemporaryFile
from typing import TypedDict

from qtpy.QtCore import QObject, QProcess, QProcessEnvironment, Signal
from qtpy.QtWidgets import QTextEdit

from webui_launcher.utils import user_agent
from webui_launcher.venv_runner import (
    VenvRunner,
    filter_requirements,
    venv_arguments,
)

# Alias for int type to represent a job idenfifier in the installer queue
JobId = int

log = getLogger(__name__)


class InstallerActions(StrEnum):
    "Available actions for the installer queue"

    INSTALL = auto()
    UNINSTALL = auto()
    UPGRADE = auto()
    CHECKOUT = auto()
    CANCEL = auto()
    CANCEL_ALL = auto()


class ProcessFinishedData(TypedDict):
    """Data about a finished process."""

    exit_code: int
    exit_status: int
    action: InstallerActions
    pkgs: tuple[str, ...]
    group: str | None


class InstallerTools(StrEnum):
    "Installer tools selectable by InstallerQueue jobs"

    PYPI = auto()
    GIT = auto()
    VENV = auto()


@dataclass(frozen=True)
class AbstractInstallerTool:
    """Abstract base class for installer tools.

    `prefix` is the directory the tool works on: the virtual environment
    for pip and venv jobs, the repository for git jobs.
    """

    action: InstallerActions
    pkgs: tuple[str, ...]
    origins: tuple[str, ...] = ()
    prefix: str | None = None
    process: QProcess = None
    constraints: tuple[str, ...] = ()
    requirements: str | None = None
    excludes: tuple[str, ...] = ()
    group: str | None = None

    @property
    def ident(self) -> JobId:
        return hash(
            (
                self.action,
                *self.pkgs,
                *self.origins,
                self.prefix,
                self.process,
                self.group,
            )
        )

    # abstract method
    def executable(self) -> str:
        "Path to the executable that will run the task"
        raise NotImplementedError

    # abstract method
    def arguments(self) -> list[str]:
        "Arguments supplied to the executable"
        raise NotImplementedError

    # abstract method
    def environment(
        self, env: QProcessEnvironment = None
    ) -> QProcessEnvironment:
        "Changes needed in the environment variables."
        raise NotImplementedError

    # abstract method
    @classmethod
    def base_python(cls) -> str:
        "Interpreter used to create virtual environments"
        raise NotImplementedError

    @classmethod
    def available(cls) -> bool:
        """
        Check if the tool is available by performing a little test
        """
        raise NotImplementedError

    def _venv(self) -> VenvRunner:
        if self.prefix is None:
            raise ValueError('Prefix has not been specified!')
        return VenvRunner(self.prefix)

    @cached_property
    def _constraints_file(self) -> str:
        with NamedTemporaryFile(
            'w', suffix='-launcher-constraints.txt', delete=False
        ) as f:
            f.write('\n'.join(self.constraints))
        atexit.register(os.unlink, f.name)
        return f.name

    def _requirements_file(self) -> str:
        requirements = Path(self.requirements)
        # the file only exists once earlier jobs of the group have run
        if self.excludes and requirements.is_file():
            return str(
                filter_requirements(requirements, self.excludes, self.prefix)
            )
        return str(requirements)

    def _install_arguments(self) -> list[str]:
        args = ['install']
        if self.constraints:
            args += ['-c', self._constraints_file]
        for origin in self.origins:
            args += ['--extra-index-url', origin]
        if self.requirements:
            args += ['-r', self._requirements_file()]
        return args


class PipInstallerTool(AbstractInstallerTool):
    """Pip installer tool for the launcher.

    This class is used to install and uninstall packages using the pip of
    the virtual environment at `prefix`.
    """

    def executable(self) -> str:
        return str(self._venv().python_path)

    @classmethod
    def available(cls) -> bool:
        """Check if pip is available."""
        process = run(
            [sys.executable, '-m', 'pip', '--version'], capture_output=True
        )
        return process.returncode == 0

    def arguments(self) -> list[str]:
        """Compose arguments for the pip command."""
        args = ['-m', 'pip']

        if self.action == InstallerActions.INSTALL:
            args += self._install_arguments()

        elif self.action == InstallerActions.UPGRADE:
            args += [*self._install_arguments(), '--upgrade']

        elif self.action == InstallerActions.UNINSTALL:
            args += ['uninstall', '-y']

        else:
            raise ValueError(f"Action '{self.action}' not supported!")

        if log.getEffectiveLevel() < 30:  # DEBUG and INFO level
            args.append('-v')

        return [*args, *self.pkgs]

    def environment(
        self, env: QProcessEnvironment = None
    ) -> QProcessEnvironment:
        if env is None:
            env = QProcessEnvironment.systemEnvironment()
        env.remove('PYTHONHOME')
        env.insert('VIRTUAL_ENV', str(self.prefix))
        env.insert('PYTHONUNBUFFERED', '1')
        env.insert('PIP_USER_AGENT_USER_DATA', user_agent())
        return env


class UvInstallerTool(AbstractInstallerTool):
    """Uv installer tool for the launcher.

    This class is used to install and uninstall packages using uv.
    """

    @classmethod
    def executable(cls) -> str:
        "Path to the executable that will run the task"
        if sys.platform == 'win32':
            path = os.path.join(sys.prefix, 'Scripts', 'uv.exe')
        else:
            path = os.path.join(sys.prefix, 'bin', 'uv')
        if os.path.isfile(path):
            return path
        return 'uv'

    @classmethod
    def available(cls) -> bool:
        """Check if uv is available."""
        try:
            process = run(
                [cls.executable(), '--version'], capture_output=True
            )
        except FileNotFoundError:  # pragma: no cover
            return False
        else:
            return process.returncode == 0

    def arguments(self) -> list[str]:
        """Compose arguments for the uv pip command."""
        args = ['pip']

        if self.action == InstallerActions.INSTALL:
            args += self._install_arguments()

        elif self.action == InstallerActions.UPGRADE:
            args += self._install_arguments()
            for pkg in self.pkgs:
                args.append(f'--upgrade-package={pkg}')

        elif self.action == InstallerActions.UNINSTALL:
            args += ['uninstall']

        else:
            raise ValueError(f"Action '{self.action}' not supported!")

        if log.getEffectiveLevel() < 30:  # DEBUG and INFO level
            args.append('-v')

        args.extend(['--python', str(self._venv().python_path)])

        return [*args, *self.pkgs]

    def environment(
        self, env: QProcessEnvironment = None
    ) -> QProcessEnvironment:
        if env is None:
            env = QProcessEnvironment.systemEnvironment()
        env.remove('PYTHONHOME')
        return env


class GitInstallerTool(AbstractInstallerTool):
    """Git tool for the launcher.

    ``install`` clones ``pkgs[0]`` into `prefix`, optionally at the ref in
    ``pkgs[1]``. ``upgrade`` fetches branches and tags from origin and
    ``checkout`` moves the working tree to the ref in ``pkgs[0]``, resetting
    that branch to ``pkgs[1]`` first when given.
    """

    @classmethod
    def executable(cls) -> str:
        return 'git'

    @classmethod
    def available(cls) -> bool:
        try:
            process = run(
                [cls.executable(), '--version'], capture_output=True
            )
        except FileNotFoundError:  # pragma: no cover
            return False
        else:
            return process.returncode == 0

    def arguments(self) -> list[str]:
        if self.prefix is None:
            raise ValueError('Prefix has not been specified!')

        if self.action == InstallerActions.INSTALL:
            url, *ref = self.pkgs
            args = ['clone', '--progress']
            if ref and ref[0]:
                args += ['--branch', ref[0]]
            return [*args, url, str(self.prefix)]

        if self.action == InstallerActions.UPGRADE:
            return [
                '-C',
                str(self.prefix),
                'fetch',
                '--tags',
                '--force',
                'origin',
            ]

        if self.action == InstallerActions.CHECKOUT:
            ref, *start_point = self.pkgs
            args = ['-C', str(self.prefix), 'checkout', '--force']
            if start_point:
                return [*args, '-B', ref, start_point[0]]
            return [*args, ref]

        raise ValueError(f"Action '{self.action}' not supported!")

    def environment(
        self, env: QProcessEnvironment = None
    ) -> QProcessEnvironment:
        if env is None:
            env = QProcessEnvironment.systemEnvironment()
        # never block on credential prompts
        env.insert('GIT_TERMINAL_PROMPT', '0')
        return env


class VenvInstallerTool(AbstractInstallerTool):
    """Creates the virtual environment at `prefix`."""

    def executable(self) -> str:
        return self.base_python()

    @classmethod
    def available(cls) -> bool:
        try:
            process = run(
                [cls.base_python(), '-m', 'virtualenv', '--version'],
                capture_output=True,
            )
        except FileNotFoundError:  # pragma: no cover
            return False
        else:
            return process.returncode == 0

    def arguments(self) -> list[str]:
        if self.action != InstallerActions.INSTALL:
            raise ValueError(f"Action '{self.action}' not supported!")
        if self.prefix is None:
            raise ValueError('Prefix has not been specified!')
        return venv_arguments(self.prefix)

    def environment(
        self, env: QProcessEnvironment = None
    ) -> QProcessEnvironment:
        if env is None:
            env = QProcessEnvironment.systemEnvironment()
        env.remove('PYTHONHOME')
        return env


class InstallerQueue(QObject):
    """Queue for installation tasks of the launcher."""

    # emitted when all jobs are finished. Not to be confused with finished,
    # which is emitted when each individual job is finished.
    # Tuple of exit codes for each individual job
    allFinished = Signal(tuple)

    # emitted when each job finishes
    # dict: ProcessFinishedData
    processFinished = Signal(dict)

    # emitted when each job starts
    started = Signal()

    # emitted for every chunk of text logged by the queue
    outputReceived = Signal(str)

    # classes to manage each kind of job
    PYPI_INSTALLER_TOOL_CLASS = PipInstallerTool
    GIT_INSTALLER_TOOL_CLASS = GitInstallerTool
    VENV_INSTALLER_TOOL_CLASS = VenvInstallerTool

    def __init__(
        self, parent: QObject | None = None, prefix: str | None = None
    ) -> None:
        super().__init__(parent)
        self._queue: deque[AbstractInstallerTool] = deque()
        self._current_process: QProcess = None
        self._prefix = prefix
        self._output_widget = None
        self._exit_codes: list[int] = []

    # -------------------------- Public API ------------------------------
    def install(
        self,
        tool: InstallerTools,
        pkgs: Sequence[str],
        *,
        prefix: str | None = None,
        origins: Sequence[str] = (),
        **kwargs,
    ) -> JobId:
        """Install packages in the installer queue.

        This installs packages in `pkgs` into `prefix` using `tool` with
        additional `origins` as source for `pkgs`. For git, `pkgs` is the
        repository url and an optional ref, and `prefix` the clone target.
        For venv, `prefix` is the environment to create.

        Parameters
        ----------
        tool : InstallerTools
            Which type of installation tool to use.
        pkgs : Sequence[str]
            List of packages to install.
        prefix : Optional[str], optional
            Optional prefix to install packages into.
        origins : Optional[Sequence[str]], optional
            Additional sources for packages to be downloaded from.
        **kwargs
            ``constraints``, ``requirements``, ``excludes`` and ``group``
            are passed on to the tool.

        Returns
        -------
        JobId : int
            An ID to reference the job. Use to cancel the process.
        """
        item = self._build_queue_item(
            tool=tool,
            action=InstallerActions.INSTALL,
            pkgs=pkgs,
            prefix=prefix,
            origins=origins,
            process=self._create_process(),
            **kwargs,
        )
        return self._queue_item(item)

    def upgrade(
        self,
        tool: InstallerTools,
        pkgs: Sequence[str],
        *,
        prefix: str | None = None,
        origins: Sequence[str] = (),
        **kwargs,
    ) -> JobId:
        """Upgrade packages in the installer queue.

        Upgrade in `pkgs` into `prefix` using `tool` with additional
        `origins` as source for `pkgs`. For git this fetches the remote.

        Parameters
        ----------
        tool : InstallerTools
            Which type of installation tool to use.
        pkgs : Sequence[str]
            List of packages to install.
        prefix : Optional[str], optional
            Optional prefix to install packages into.
        origins : Optional[Sequence[str]], optional
            Additional sources for packages to be downloaded from.

        Returns
        -------
        JobId : int
            An ID to reference the job. Use to cancel the process.
        """
        item = self._build_queue_item(
            tool=tool,
            action=InstallerActions.UPGRADE,
            pkgs=pkgs,
            prefix=prefix,
            origins=origins,
            process=self._create_process(),
            **kwargs,
        )
        return self._queue_item(item)

    def uninstall(
        self,
        tool: InstallerTools,
        pkgs: Sequence[str],
        *,
        prefix: str | None = None,
        **kwargs,
    ) -> JobId:
        """Uninstall packages in the installer queue.

        Uninstall packages in `pkgs` from `prefix` using `tool`.

        Parameters
        ----------
        tool : InstallerTools
            Which type of installation tool to use.
        pkgs : Sequence[str]
            List of packages to uninstall.
        prefix : Optional[str], optional
            Optional prefix from which to uninstall packages.

        Returns
        -------
        JobId : int
            An ID to reference the job. Use to cancel the process.
        """
        item = self._build_queue_item(
            tool=tool,
            action=InstallerActions.UNINSTALL,
            pkgs=pkgs,
            prefix=prefix,
            process=self._create_process(),
            **kwargs,
        )
        return self._queue_item(item)

    def checkout(
        self,
        ref: str,
        *,
        prefix: str,
        start_point: str | None = None,
        **kwargs,
    ) -> JobId:
        """Check out `ref` in the git repository at `prefix`.

        With a `start_point`, the branch `ref` is reset to it first.

        Returns
        -------
        JobId : int
            An ID to reference the job. Use to cancel the process.
        """
        item = self._build_queue_item(
            tool=InstallerTools.GIT,
            action=InstallerActions.CHECKOUT,
            pkgs=[ref] if start_point is None else [ref, start_point],
            prefix=prefix,
            process=self._create_process(),
            **kwargs,
        )
        return self._queue_item(item)

    def cancel(self, job_id: JobId) -> None:
        """Cancel a job.

        Cancel the process, if it is running, referenced by `job_id`.
        If `job_id` does not exist in the queue, a ValueError is raised.

        Parameters
        ----------
        job_id : JobId
            Job ID to cancel.
        """
        for i, item in enumerate(deque(self._queue)):
            if item.ident == job_id:
                if i == 0:
                    # first in queue, currently running
                    self._queue.remove(item)

                    with contextlib.suppress(RuntimeError, TypeError):
                        item.process.finished.disconnect(
                            self._on_process_finished
                        )
                        item.process.errorOccurred.disconnect(
                            self._on_error_occurred
                        )

                    self._end_process(item.process)
                else:
                    # job is still pending, just remove it from the queue
                    self._queue.remove(item)

                self._emit_cancelled(InstallerActions.CANCEL, item)
                if item.group is not None:
                    self._drop_group(item.group)
                # continue processing the queue
                self._process_queue()
                return

        msg = f'No job with id {job_id}. Current queue:\n - '
        msg += '\n - '.join(
            [
                f'{item.ident} -> {item.executable()} {item.pkgs}'
                for item in self._queue
            ]
        )
        raise ValueError(msg)

    def cancel_all(self) -> None:
        """Terminate all processes in the queue and emit `processFinished`."""
        all_pkgs: list[str] = []
        for item in deque(self._queue):
            all_pkgs.extend(item.pkgs)
            process = item.process

            with contextlib.suppress(RuntimeError, TypeError):
                process.finished.disconnect(self._on_process_finished)
                process.errorOccurred.disconnect(self._on_error_occurred)

            self._end_process(process)

        self._queue.clear()
        self._current_process = None
        self.processFinished.emit(
            {
                'exit_code': 1,
                'exit_status': 0,
                'action': InstallerActions.CANCEL_ALL,
                'pkgs': tuple(all_pkgs),
                'group': None,
            }
        )
        self._process_queue()

    def waitForFinished(self, msecs: int = 10000) -> bool:
        """Block and wait for all jobs to finish.

        Parameters
        ----------
        msecs : int, optional
            Time to wait, by default 10000
        """
        while self.hasJobs():
            if self._current_process is not None:
                self._current_process.waitForFinished(msecs)
        return True

    def hasJobs(self) -> bool:
        """True if there are jobs remaining in the queue."""
        return bool(self._queue)

    def currentJobs(self) -> int:
        """Return the number of running jobs in the queue."""
        return len(self._queue)

    def set_output_widget(self, output_widget: QTextEdit) -> None:
        """Set the output widget for text output."""
        if output_widget:
            self._output_widget = output_widget

    # -------------------------- Private methods ------------------------------
    def _create_process(self) -> QProcess:
        process = QProcess(self)
        process.setProcessChannelMode(QProcess.MergedChannels)
        process.readyReadStandardOutput.connect(self._on_stdout_ready)
        process.readyReadStandardError.connect(self._on_stderr_ready)
        process.finished.connect(self._on_process_finished)
        process.errorOccurred.connect(self._on_error_occurred)
        return process

    def _log(self, msg: str) -> None:
        log.debug(msg)
        self.outputReceived.emit(msg)
        if self._output_widget:
            self._output_widget.append(msg)

    def _get_tool(self, tool: InstallerTools) -> type[AbstractInstallerTool]:
        if tool == InstallerTools.PYPI:
            return self.PYPI_INSTALLER_TOOL_CLASS
        if tool == InstallerTools.GIT:
            return self.GIT_INSTALLER_TOOL_CLASS
        if tool == InstallerTools.VENV:
            return self.VENV_INSTALLER_TOOL_CLASS
        raise ValueError(f'InstallerTool {tool} not recognized!')

    def _build_queue_item(
        self,
        tool: InstallerTools,
        action: InstallerActions,
        pkgs: Iterable[str],
        prefix: str | None = None,
        origins: Iterable[str] = (),
        **kwargs,
    ) -> AbstractInstallerTool:
        for key in ('constraints', 'excludes'):
            if key in kwargs:
                kwargs[key] = tuple(kwargs[key])
        if kwargs.get('requirements') is not None:
            kwargs['requirements'] = str(kwargs['requirements'])
        prefix = prefix or self._prefix
        return self._get_tool(tool)(
            pkgs=tuple(pkgs),
            action=action,
            origins=tuple(origins),
            prefix=None if prefix is None else str(prefix),
            **kwargs,
        )

    def _queue_item(self, item: AbstractInstallerTool) -> JobId:
        self._queue.append(item)
        self._process_queue()
        return item.ident

    def _process_queue(self) -> None:
        if not self._queue:
            self.allFinished.emit(tuple(self._exit_codes))
            self._exit_codes = []
            return

        tool = self._queue[0]
        process = tool.process

        if process.state() != QProcess.Running:
            process.setProgram(str(tool.executable()))
            process.setProcessEnvironment(tool.environment())
            process.setArguments([str(arg) for arg in tool.arguments()])
            process.started.connect(self.started)

            self._log(
                f"Starting '{process.program()}' with args {process.arguments()}"
            )

            process.start()
            self._current_process = process

    def _end_process(self, process: QProcess) -> None:
        if os.name == 'nt':
            # TODO: this might be too agressive and won't allow rollbacks!
            # investigate whether we can also do .terminate()
            process.kill()
        else:
            process.terminate()

        if self._output_widget:
            self._output_widget.append('\nTask was cancelled by the user.')

    def _emit_cancelled(
        self, action: InstallerActions, item: AbstractInstallerTool
    ) -> None:
        self.processFinished.emit(
            {
                'exit_code': 1,
                'exit_status': 0,
                'action': action,
                'pkgs': item.pkgs,
                'group': item.group,
            }
        )

    def _drop_group(self, group: str) -> None:
        """Remove the pending jobs of a failed pipeline."""
        for item in [job for job in self._queue if job.group == group]:
            self._queue.remove(item)
            self._log(
                f'Skipping {item.action} of {item.pkgs}: '
                'a previous step failed.'
            )
            self._emit_cancelled(InstallerActions.CANCEL, item)

    def _on_process_finished(
        self, exit_code: int, exit_status: QProcess.ExitStatus
    ) -> None:
        self._on_process_done(exit_code=exit_code, exit_status=exit_status)

    def _on_error_occurred(self, error: QProcess.ProcessError) -> None:
        # every other error is followed by `finished`
        if error == QProcess.ProcessError.FailedToStart:
            self._on_process_done(error=error)
        else:
            log.debug('Process error: %s', error)

    def _on_process_done(
        self,
        exit_code: int | None = None,
        exit_status: QProcess.ExitStatus | None = None,
        error: QProcess.ProcessError | None = None,
    ) -> None:
        item = None
        with contextlib.suppress(IndexError):
            item = self._queue.popleft()

        if error is not None:
            msg = f'Task finished with errors! Error: {error}.'
        else:
            msg = (
                f'Task finished with exit code {exit_code} '
                f'with status {exit_status}.'
            )

        if item is not None:
            self.processFinished.emit(
                {
                    'exit_code': exit_code,
                    'exit_status': exit_status,
                    'action': item.action,
                    'pkgs': item.pkgs,
                    'group': item.group,
                }
            )
            self._exit_codes.append(exit_code)

        self._log(msg)
        if item is not None and item.group is not None and (
            error is not None or exit_code
        ):
            self._drop_group(item.group)
        self._process_queue()

    def _on_stdout_ready(self) -> None:
        if self._current_process is not None:
            try:
                text = (
                    self._current_process.readAllStandardOutput()
                    .data()
                    .decode()
                )
            except UnicodeDecodeError:
                log.exception('Could not decode stdout')
                return
            if text:
                self._log(text)

    def _on_stderr_ready(self) -> None:
        if self._current_process is not None:
            text = (
                self._current_process.readAllStandardError()
                .data()
                .decode(errors='replace')
            )
            if text:
                self._log(text)
