"""
Host for the embedded interpreter runtime.

`PyRunner` knows where the embedded runtime lives inside the library and
exposes evaluate/execute primitives. Every call is run on a worker thread
while holding a single class-wide lock, so at most one piece of code runs
inside the host at any time. Output written while a call runs is captured
by the host `PyIOStream` objects instead of the launcher's own console.
"""

import builtins
import contextlib
import io
import os
import shlex
import sys
import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from logging import getLogger
from pathlib import Path
from typing import Any, NamedTuple, TypeVar

from webui_launcher.utils import prepend_to_path, run_process

log = getLogger(__name__)

T = TypeVar('T')

# Same for all platforms
PYTHON_DIR_NAME = 'Python310'


class PlatformNotSupportedError(OSError):
    """The embedded runtime is not available for this platform."""


class PyVersionInfo(NamedTuple):
    major: int
    minor: int
    micro: int
    release_level: str
    serial: int


class PyIOStream(io.TextIOBase):
    """Text stream that buffers writes and forwards them to subscribers."""

    def __init__(self) -> None:
        super().__init__()
        self._lock = threading.Lock()
        self._buffer: list[str] = []
        self._callbacks: list[Callable[[str], None]] = []

    def connect(self, callback: Callable[[str], None]) -> None:
        self._callbacks.append(callback)

    def disconnect(self, callback: Callable[[str], None]) -> None:
        self._callbacks.remove(callback)

    def writable(self) -> bool:
        return True

    def write(self, text: str) -> int:
        with self._lock:
            self._buffer.append(text)
        for callback in list(self._callbacks):
            callback(text)
        return len(text)

    @property
    def text(self) -> str:
        with self._lock:
            return ''.join(self._buffer)

    def clear(self) -> None:
        with self._lock:
            self._buffer.clear()


class PyRunner:
    """Embedded interpreter host for the library at `library_dir`."""

    # Serializes every call into the host
    _py_running = threading.Lock()
    _executor = ThreadPoolExecutor(thread_name_prefix='pyrunner')

    def __init__(self, library_dir: str | Path) -> None:
        self.library_dir = Path(library_dir)
        self.stdout_stream: PyIOStream | None = None
        self.stderr_stream: PyIOStream | None = None
        self._initialized = False

    # -------------------------- Paths ---------------------------------------
    @property
    def python_dir(self) -> Path:
        return self.library_dir / 'Assets' / PYTHON_DIR_NAME

    @property
    def python_home(self) -> Path:
        # On Windows the home is the root path, on Unix it's the bin path
        if sys.platform == 'win32':
            return self.python_dir
        return self.python_dir / 'bin'

    @property
    def python_dll_path(self) -> Path:
        if sys.platform == 'win32':
            return self.python_dir / 'python310.dll'
        if sys.platform.startswith('linux'):
            return self.python_dir / 'lib' / 'libpython3.10.so'
        if sys.platform == 'darwin':
            return self.python_dir / 'lib' / 'libpython3.10.dylib'
        raise PlatformNotSupportedError(sys.platform)

    @property
    def python_exe_path(self) -> Path:
        if sys.platform == 'win32':
            return self.python_dir / 'python.exe'
        if sys.platform.startswith('linux') or sys.platform == 'darwin':
            return self.python_dir / 'bin' / 'python3.10'
        raise PlatformNotSupportedError(sys.platform)

    @property
    def pip_exe_path(self) -> Path:
        if sys.platform == 'win32':
            return self.python_dir / 'Scripts' / 'pip.exe'
        if sys.platform.startswith('linux') or sys.platform == 'darwin':
            return self.python_dir / 'bin' / 'pip3.10'
        raise PlatformNotSupportedError(sys.platform)

    @property
    def get_pip_path(self) -> Path:
        return self.python_dir / 'get-pip.py'

    @property
    def virtualenv_path(self) -> Path:
        if sys.platform == 'win32':
            return self.python_dir / 'Scripts' / 'virtualenv.exe'
        return self.python_dir / 'bin' / 'virtualenv'

    @property
    def pip_installed(self) -> bool:
        return self.pip_exe_path.is_file()

    @property
    def virtualenv_installed(self) -> bool:
        return self.virtualenv_path.is_file()

    @property
    def initialized(self) -> bool:
        return self._initialized

    # -------------------------- Public API ----------------------------------
    def initialize(self) -> None:
        """Initialize the host for the embedded runtime.

        Can be called with no effect after initialization.

        Raises
        ------
        FileNotFoundError
            If the runtime library is missing.
        """
        if self._initialized:
            return

        log.info('Adding %s to PATH', self.python_home)
        dll_path = self.python_dll_path
        log.info('Initializing Python runtime with library: %s', dll_path)
        if not dll_path.is_file():
            log.error('Python linked library not found')
            raise FileNotFoundError(
                f'Python linked library not found: {dll_path}'
            )
        prepend_to_path(self.python_home)

        self.stdout_stream = PyIOStream()
        self.stderr_stream = PyIOStream()
        self._initialized = True

    def setup_pip(self) -> None:
        """One-time setup for get-pip."""
        if not self.get_pip_path.is_file():
            raise FileNotFoundError(f'get-pip not found: {self.get_pip_path}')
        run_process(
            [self.python_exe_path, self.get_pip_path], cwd=self.python_dir
        )

    def install_package(self, package: str) -> None:
        """Install a package into the embedded runtime with pip."""
        if not self.pip_exe_path.is_file():
            raise FileNotFoundError(f'pip not found: {self.pip_exe_path}')
        run_process([self.pip_exe_path, 'install', *shlex.split(package)])

    def run_in_thread_with_lock(
        self,
        func: Callable[[], T],
        wait_timeout: float | None = None,
    ) -> 'Future[T]':
        """Run `func` on a worker thread while holding the host lock.

        Parameters
        ----------
        func : Callable
            Function to run.
        wait_timeout : float, optional
            Seconds to wait for the lock. Waits forever when None.

        Returns
        -------
        Future
            Fails with `TimeoutError` if the lock could not be acquired in
            time. Pending futures can be cancelled.
        """
        return self._executor.submit(self._call_with_lock, func, wait_timeout)

    def eval(self, expression: str) -> 'Future[str]':
        """Evaluate an expression and return its value as a string."""
        return self.run_in_thread_with_lock(
            lambda: str(eval(expression, self._new_scope()))
        )

    def eval_value(self, expression: str) -> 'Future[Any]':
        """Evaluate an expression and return its value."""
        return self.run_in_thread_with_lock(
            lambda: eval(expression, self._new_scope())
        )

    def exec(self, code: str) -> 'Future[None]':
        """Execute code without returning a value."""
        return self.run_in_thread_with_lock(
            lambda: exec(code, self._new_scope())
        )

    def get_version_info(self) -> 'Future[PyVersionInfo]':
        """Return the version of the interpreter running the host."""
        return self.run_in_thread_with_lock(
            lambda: PyVersionInfo(
                *eval("tuple(__import__('sys').version_info)", {})
            )
        )

    # -------------------------- Private methods -----------------------------
    @staticmethod
    def _new_scope() -> dict[str, Any]:
        return {'__name__': '__pyrunner__', '__builtins__': builtins}

    def _call_with_lock(
        self, func: Callable[[], T], wait_timeout: float | None
    ) -> T:
        acquired = self._py_running.acquire(
            timeout=-1 if wait_timeout is None else wait_timeout
        )
        if not acquired:
            raise TimeoutError(
                f'Could not acquire the interpreter lock in {wait_timeout}s'
            )
        try:
            with contextlib.ExitStack() as stack:
                if self.stdout_stream is not None:
                    stack.enter_context(
                        contextlib.redirect_stdout(self.stdout_stream)
                    )
                if self.stderr_stream is not None:
                    stack.enter_context(
                        contextlib.redirect_stderr(self.stderr_stream)
                    )
                return func()
        finally:
            self._py_running.release()


def python_environment(runner: PyRunner, base: dict | None = None) -> dict:
    """Environment for subprocesses of the embedded runtime."""
    env = dict(os.environ if base is None else base)
    env.pop('PYTHONHOME', None)
    env['PATH'] = os.pathsep.join(
        [str(runner.python_home), env.get('PATH', '')]
    )
    return env
