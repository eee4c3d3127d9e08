"""
The installation logic bound to the launcher library.

The main object is `LauncherInstallerQueue`, a `InstallerQueue` subclass
whose tools use the embedded interpreter runtime to create virtual
environments and the git found by the prerequisites helper.
"""

import sys
from functools import lru_cache
from logging import getLogger

from qtpy.QtCore import QObject, Signal

from webui_launcher.base_qt_package_installer import (
    GitInstallerTool,
    InstallerActions,
    InstallerQueue,
    PipInstallerTool,
    ProcessFinishedData,
    UvInstallerTool,
    VenvInstallerTool,
)
from webui_launcher.config import Settings
from webui_launcher.prerequisites import PrerequisiteHelper

log = getLogger(__name__)


@lru_cache
def _prerequisites() -> PrerequisiteHelper:
    return PrerequisiteHelper(Settings())


def _get_base_python() -> str:
    """The embedded runtime when installed, this interpreter otherwise."""
    python = _prerequisites().pyrunner.python_exe_path
    if python.is_file():
        return str(python)
    return sys.executable


def _get_git_exe() -> str:
    return _prerequisites().git_bin_path


class LauncherGitInstallerTool(GitInstallerTool):
    @classmethod
    def executable(cls) -> str:
        return _get_git_exe()


class LauncherVenvInstallerTool(VenvInstallerTool):
    @classmethod
    def base_python(cls) -> str:
        return _get_base_python()


class LauncherInstallerQueue(InstallerQueue):
    PYPI_INSTALLER_TOOL_CLASS = (
        UvInstallerTool if UvInstallerTool.available() else PipInstallerTool
    )
    GIT_INSTALLER_TOOL_CLASS = LauncherGitInstallerTool
    VENV_INSTALLER_TOOL_CLASS = LauncherVenvInstallerTool


def cache_clear() -> None:
    _prerequisites.cache_clear()


class PipelineTracker(QObject):
    """Follow the groups of jobs queued on an `InstallerQueue`.

    `pipelineFinished` is emitted with the group and whether every job of
    it succeeded, once all the jobs announced with `track` have reported.
    """

    pipelineFinished = Signal(str, bool)

    def __init__(
        self, queue: InstallerQueue, parent: QObject | None = None
    ) -> None:
        super().__init__(parent)
        self._expected: dict[str, int] = {}
        self._done: dict[str, int] = {}
        self._failed: set[str] = set()
        queue.processFinished.connect(self._on_process_finished)

    def track(self, group: str, job_count: int) -> None:
        self._expected[group] = job_count
        self._check(group)

    def is_tracking(self, group: str) -> bool:
        return group in self._expected

    def _finish(self, group: str, success: bool) -> None:
        self._expected.pop(group, None)
        self._done.pop(group, None)
        self._failed.discard(group)
        log.info(
            'Pipeline %s %s', group, 'succeeded' if success else 'failed'
        )
        self.pipelineFinished.emit(group, success)

    def _check(self, group: str) -> None:
        expected = self._expected.get(group)
        if expected is None or self._done.get(group, 0) < expected:
            return
        self._finish(group, group not in self._failed)

    def _on_process_finished(self, data: ProcessFinishedData) -> None:
        if data['action'] == InstallerActions.CANCEL_ALL:
            for group in list(self._expected):
                self._finish(group, False)
            self._done.clear()
            self._failed.clear()
            return
        group = data['group']
        if group is None:
            return
        self._done[group] = self._done.get(group, 0) + 1
        if data['action'] == InstallerActions.CANCEL or data['exit_code'] != 0:
            self._failed.add(group)
        self._check(group)
