"""
Installation of everything the packages need before they can be installed:
the embedded interpreter runtime (with pip and virtualenv), git and, on
Windows, the Visual C++ runtime.

All methods block; the UI runs them on a worker thread.
"""

import os
import platform
import shutil
import sys
import tarfile
import zipfile
from collections.abc import Callable
from logging import getLogger
from pathlib import Path
from tempfile import TemporaryDirectory

from webui_launcher.config import Settings
from webui_launcher.models import ProcessOutput, ProgressReport
from webui_launcher.pyrunner import PyRunner, python_environment
from webui_launcher.utils import (
    download_file,
    prepend_to_path,
    run_process,
)
from webui_launcher.venv_runner import VenvRunner

log = getLogger(__name__)

Progress = Callable[[ProgressReport], None] | None

PYTHON_VERSION = '3.10.11'
PYTHON_DOWNLOAD_URL_WINDOWS = (
    'https://www.python.org/ftp/python/3.10.11/'
    'python-3.10.11-embed-amd64.zip'
)
PYTHON_DOWNLOAD_URL_STANDALONE = (
    'https://github.com/indygreg/python-build-standalone/releases/download/'
    '20230507/cpython-3.10.11+20230507-{arch}-install_only.tar.gz'
)
STANDALONE_ARCHS = {
    ('linux', 'x86_64'): 'x86_64-unknown-linux-gnu',
    ('linux', 'aarch64'): 'aarch64-unknown-linux-gnu',
    ('darwin', 'x86_64'): 'x86_64-apple-darwin',
    ('darwin', 'arm64'): 'aarch64-apple-darwin',
}
GET_PIP_URL = 'https://bootstrap.pypa.io/get-pip.py'
GIT_DOWNLOAD_URL_WINDOWS = (
    'https://github.com/git-for-windows/git/releases/download/'
    'v2.41.0.windows.1/MinGit-2.41.0-64-bit.zip'
)
VCREDIST_DOWNLOAD_URL = 'https://aka.ms/vs/16/release/vc_redist.x64.exe'


def _report(progress: Progress, value: float, message: str) -> None:
    log.info(message)
    if progress is not None:
        progress(
            ProgressReport(value, message, is_indeterminate=value < 0)
        )


class PrerequisiteHelper:
    def __init__(
        self, settings: Settings, pyrunner: PyRunner | None = None
    ) -> None:
        self.settings = settings
        self.pyrunner = pyrunner or PyRunner(settings.library_dir)
        self._path_extended = False

    # -------------------------- Paths ---------------------------------------
    @property
    def git_dir(self) -> Path:
        return self.settings.assets_dir / 'Git'

    @property
    def git_bin_path(self) -> str:
        """Path to the git executable, the portable copy on Windows."""
        if sys.platform == 'win32':
            return str(self.git_dir / 'cmd' / 'git.exe')
        return shutil.which('git') or 'git'

    @property
    def is_git_installed(self) -> bool:
        if sys.platform == 'win32':
            return Path(self.git_bin_path).is_file()
        return shutil.which('git') is not None

    @property
    def is_python_installed(self) -> bool:
        return self.pyrunner.python_dll_path.is_file()

    @property
    def is_vcredist_installed(self) -> bool:
        if sys.platform != 'win32':
            return True
        system_root = os.environ.get('SystemRoot', r'C:\Windows')
        return (Path(system_root) / 'System32' / 'vcruntime140.dll').is_file()

    # -------------------------- Public API ----------------------------------
    def install_all_if_necessary(self, progress: Progress = None) -> None:
        self.settings.ensure_library_dirs()
        self.install_vcredist_if_necessary(progress)
        self.install_git_if_necessary(progress)
        # get-pip lives in the runtime folder, which a fresh install replaces
        self.install_python_if_necessary(progress)
        self.unpack_resources_if_necessary(progress)
        self.update_path_extensions()

    def unpack_resources_if_necessary(self, progress: Progress = None) -> None:
        if self.pyrunner.get_pip_path.is_file():
            return
        _report(progress, -1, 'Downloading get-pip...')
        download_file(GET_PIP_URL, self.pyrunner.get_pip_path, progress)

    def install_git_if_necessary(self, progress: Progress = None) -> None:
        if self.is_git_installed:
            return
        if sys.platform != 'win32':
            raise FileNotFoundError(
                'git was not found on PATH, please install it with your '
                'system package manager'
            )
        _report(progress, -1, 'Installing git...')
        with TemporaryDirectory() as tmp:
            archive = download_file(
                GIT_DOWNLOAD_URL_WINDOWS, Path(tmp) / 'git.zip', progress
            )
            _report(progress, -1, 'Extracting git...')
            with zipfile.ZipFile(archive) as zf:
                zf.extractall(self.git_dir)
        _report(progress, 1, 'Git installed')

    def install_vcredist_if_necessary(self, progress: Progress = None) -> None:
        if self.is_vcredist_installed:
            return
        _report(progress, -1, 'Installing the Visual C++ runtime...')
        with TemporaryDirectory() as tmp:
            installer = download_file(
                VCREDIST_DOWNLOAD_URL, Path(tmp) / 'vcredist.exe', progress
            )
            run_process([installer, '/install', '/quiet', '/norestart'])
        _report(progress, 1, 'Visual C++ runtime installed')

    def install_python_if_necessary(self, progress: Progress = None) -> None:
        if self.is_python_installed:
            if not self.pyrunner.virtualenv_installed:
                self._install_pip_and_virtualenv(progress)
            return

        python_dir = self.pyrunner.python_dir
        _report(progress, -1, f'Downloading Python {PYTHON_VERSION}...')
        with TemporaryDirectory() as tmp:
            url = python_download_url()
            archive = download_file(
                url, Path(tmp) / url.rsplit('/', 1)[-1], progress
            )
            _report(progress, -1, 'Extracting Python...')
            if python_dir.exists():
                shutil.rmtree(python_dir)
            if archive.suffix == '.zip':
                with zipfile.ZipFile(archive) as zf:
                    zf.extractall(python_dir)
                enable_site_packages(python_dir)
            else:
                with tarfile.open(archive) as tf:
                    tf.extractall(tmp, filter='data')
                # standalone builds unpack into a "python" folder
                shutil.move(str(Path(tmp) / 'python'), python_dir)
                _link_shared_library(python_dir)

        if not self.is_python_installed:
            raise FileNotFoundError(
                f'Python linked library not found after install: '
                f'{self.pyrunner.python_dll_path}'
            )
        self._install_pip_and_virtualenv(progress)
        _report(progress, 1, f'Python {PYTHON_VERSION} installed')

    def run_git(
        self, *args: str, working_directory: str | Path | None = None
    ) -> str:
        """Run git with the given arguments."""
        return run_process(
            [self.git_bin_path, *args], cwd=working_directory
        )

    def setup_python_dependencies(
        self,
        install_location: str | Path,
        requirements_file_name: str,
        progress: Progress = None,
        on_console_output: Callable[[ProcessOutput], None] | None = None,
    ) -> None:
        """Create the venv of a package and install its requirements."""
        install_location = Path(install_location)
        venv = VenvRunner(install_location / 'venv')
        _report(progress, -1, 'Creating venv...')
        venv.setup(self.pyrunner.python_exe_path, on_output=on_console_output)
        _report(progress, -1, 'Installing requirements...')
        venv.pip_install_from_requirements(
            install_location / requirements_file_name, on_console_output
        )
        _report(progress, 1, 'Requirements installed')

    def update_path_extensions(self) -> None:
        """Put git and the embedded runtime first on PATH, once."""
        if self._path_extended:
            return
        directories = [self.pyrunner.python_home]
        if sys.platform == 'win32':
            directories.insert(0, self.git_dir / 'cmd')
        prepend_to_path(*directories)
        self._path_extended = True

    # -------------------------- Private methods -----------------------------
    def _install_pip_and_virtualenv(self, progress: Progress) -> None:
        self.unpack_resources_if_necessary(progress)
        if not self.pyrunner.pip_installed:
            _report(progress, -1, 'Installing pip...')
            self.pyrunner.setup_pip()
        _report(progress, -1, 'Installing virtualenv...')
        run_process(
            [
                self.pyrunner.python_exe_path,
                '-m',
                'pip',
                'install',
                'virtualenv',
            ],
            env=python_environment(self.pyrunner),
        )


def python_download_url() -> str:
    if sys.platform == 'win32':
        return PYTHON_DOWNLOAD_URL_WINDOWS
    system = 'darwin' if sys.platform == 'darwin' else 'linux'
    key = (system, platform.machine())
    try:
        arch = STANDALONE_ARCHS[key]
    except KeyError:
        raise OSError(
            f'No Python runtime available for {key[0]} {key[1]}'
        ) from None
    return PYTHON_DOWNLOAD_URL_STANDALONE.format(arch=arch)


def enable_site_packages(python_dir: Path) -> None:
    """Uncomment ``import site`` in the ``._pth`` file of embeddable builds.

    Without it pip-installed packages are invisible to the runtime.
    """
    for pth in python_dir.glob('python3*._pth'):
        lines = pth.read_text().splitlines()
        lines = [
            'import site' if line.strip() == '#import site' else line
            for line in lines
        ]
        if 'import site' not in lines:
            lines.append('import site')
        pth.write_text('\n'.join(lines) + '\n')
        log.debug('Enabled site packages in %s', pth)


def _link_shared_library(python_dir: Path) -> None:
    """Standalone builds name the library with an ``m`` ABI suffix on
    some platforms, make the unsuffixed name available too."""
    lib = python_dir / 'lib'
    for suffix in ('.so', '.dylib'):
        expected = lib / f'libpython3.10{suffix}'
        if expected.exists():
            continue
        candidates = sorted(lib.glob(f'libpython3.10*{suffix}*'))
        if candidates:
            expected.symlink_to(candidates[0].name)

