"""
Base classes of the installable web UI packages.

A package is mostly declarative: its metadata, launch options, and the
table mapping shared model folders to its own layout. `BaseGitPackage`
adds the git-hosted release/branch handling and the install pipeline that
is queued on an `InstallerQueue`.
"""

import shutil
from collections.abc import Iterable
from logging import getLogger
from pathlib import Path

from webui_launcher import github, hardware
from webui_launcher.base_qt_package_installer import (
    InstallerQueue,
    InstallerTools,
    JobId,
)
from webui_launcher.launch_options import (
    LaunchOption,
    LaunchOptionCard,
    LaunchOptionDefinition,
    build_arguments,
)
from webui_launcher.models import (
    PackageVersion,
    SharedFolderMethod,
    SharedFolderType,
    SharedOutputType,
    TorchVersion,
)
from webui_launcher.shared_folders import remove_links, setup_links
from webui_launcher.utils import find_web_url
from webui_launcher.venv_runner import VenvRunner

log = getLogger(__name__)

TORCH_INDEX_URL = 'https://download.pytorch.org/whl/{suffix}'
VENV_DIR_NAME = 'venv'


class BasePackage:
    """An installable web UI package.

    Subclasses declare the class attributes and override the properties
    returning lists or mappings.
    """

    name: str = ''
    display_name: str = ''
    author: str = ''
    blurb: str = ''
    license_type: str = ''
    license_url: str = ''
    launch_command: str = 'launch.py'
    preview_image_url: str = ''
    output_folder_name: str = 'outputs'
    requirements_file: str = 'requirements.txt'
    # projects installed separately before the requirements
    excluded_requirements: tuple[str, ...] = (
        'torch',
        'torchvision',
        'torchaudio',
    )
    available_shared_folder_methods: tuple[SharedFolderMethod, ...] = (
        SharedFolderMethod.SYMLINK,
        SharedFolderMethod.NONE,
    )
    recommended_shared_folder_method = SharedFolderMethod.SYMLINK
    available_torch_versions: tuple[TorchVersion, ...] = (
        TorchVersion.CUDA,
        TorchVersion.CPU,
    )

    def __init__(self) -> None:
        # set from the console output of a running instance
        self.web_url: str | None = None

    def __repr__(self) -> str:
        return f'{self.__class__.__name__}()'

    # -------------------------- Declarations --------------------------------
    @property
    def launch_options(self) -> list[LaunchOptionDefinition]:
        return [LaunchOptionDefinition.EXTRAS]

    @property
    def shared_folders(self) -> dict[SharedFolderType, tuple[str, ...]]:
        return {}

    @property
    def shared_output_folders(
        self,
    ) -> dict[SharedOutputType, tuple[str, ...]] | None:
        return None

    def recommended_torch_version(self) -> TorchVersion:
        version = hardware.recommended_torch_version()
        if version in self.available_torch_versions:
            return version
        return TorchVersion.CPU

    # -------------------------- Versions ------------------------------------
    def get_latest_version(self) -> str:
        raise NotImplementedError

    def get_all_versions(
        self, release_mode: bool = True
    ) -> list[PackageVersion]:
        raise NotImplementedError

    # -------------------------- Install -------------------------------------
    def install(
        self,
        queue: InstallerQueue,
        install_location: str | Path,
        torch_version: TorchVersion | None = None,
        version: str | None = None,
    ) -> list[JobId]:
        raise NotImplementedError

    # -------------------------- Launch --------------------------------------
    def launch_arguments(
        self,
        install_path: str | Path,
        items: Iterable[LaunchOptionCard | LaunchOption] = (),
    ) -> list[str]:
        """Arguments for the venv interpreter to start the package."""
        return [
            str(Path(install_path) / self.launch_command),
            *build_arguments(items),
        ]

    def handle_console_line(self, line: str) -> bool:
        """Scrape a line of console output.

        Updates `web_url` and returns True once the package reports that it
        is ready to be used. By default the first address found is the
        ready signal.
        """
        url = find_web_url(line)
        if url is None:
            return False
        self.web_url = url
        return True

    # -------------------------- Shared folders ------------------------------
    def setup_shared_folders(
        self, install_path: str | Path, models_dir: str | Path
    ) -> None:
        setup_links(self.shared_folders, models_dir, install_path)

    def remove_shared_folders(self, install_path: str | Path) -> None:
        remove_links(self.shared_folders, install_path)

    def uninstall(self, install_path: str | Path) -> None:
        install_path = Path(install_path)
        if not install_path.exists():
            log.warning('%s is already gone', install_path)
            return
        # drop the links first so shared models are left alone
        self.remove_shared_folders(install_path)
        log.info('Removing %s', install_path)
        shutil.rmtree(install_path)

    @staticmethod
    def venv(install_path: str | Path) -> VenvRunner:
        return VenvRunner(Path(install_path) / VENV_DIR_NAME)


class BaseGitPackage(BasePackage):
    """A package installed from a GitHub repository.

    The repository is ``github.com/<author>/<name>`` and versions are its
    releases or, in branch mode, its branches.
    """

    main_branch: str = 'master'
    should_ignore_releases: bool = False
    # `TorchVersion` -> suffix of the pytorch wheel index
    torch_index: dict[TorchVersion, str] = {
        TorchVersion.CUDA: 'cu118',
        TorchVersion.ROCM: 'rocm5.4.2',
        TorchVersion.CPU: 'cpu',
    }
    torch_packages: tuple[str, ...] = ('torch', 'torchvision')
    xformers_package: str | None = None

    @property
    def github_url(self) -> str:
        return f'https://github.com/{self.author}/{self.name}'

    @property
    def download_url(self) -> str:
        return f'{self.github_url}.git'

    # -------------------------- Versions ------------------------------------
    def get_latest_version(self) -> str:
        if self.should_ignore_releases:
            return self.main_branch
        releases = [
            release
            for release in github.get_releases(self.author, self.name)
            if not release.is_prerelease
        ]
        if not releases:
            return self.main_branch
        return releases[0].tag_name

    def get_all_versions(
        self, release_mode: bool = True
    ) -> list[PackageVersion]:
        if release_mode and not self.should_ignore_releases:
            return [
                release
                for release in github.get_releases(self.author, self.name)
                if not release.is_prerelease
            ]
        return github.get_branches(self.author, self.name)

    def is_branch(self, version: str) -> bool:
        """Whether `version` names a branch rather than a release tag."""
        if version == self.main_branch:
            return True
        return any(
            branch.tag_name == version
            for branch in github.get_branches(self.author, self.name)
        )

    def get_all_commits(self, branch: str, per_page: int = 10) -> list[str]:
        return github.get_commits(self.author, self.name, branch, per_page)

    # -------------------------- Install -------------------------------------
    def torch_install(
        self, torch_version: TorchVersion
    ) -> tuple[list[str], list[str]]:
        """Packages and index urls installing `torch_version`."""
        if torch_version not in self.available_torch_versions:
            raise ValueError(
                f'{self.display_name} does not support torch {torch_version}'
            )
        if torch_version == TorchVersion.DIRECTML:
            return ['torch-directml'], []
        if torch_version == TorchVersion.MPS:
            return list(self.torch_packages), []
        suffix = self.torch_index[torch_version]
        return (
            list(self.torch_packages),
            [TORCH_INDEX_URL.format(suffix=suffix)],
        )

    def install(
        self,
        queue: InstallerQueue,
        install_location: str | Path,
        torch_version: TorchVersion | None = None,
        version: str | None = None,
    ) -> list[JobId]:
        """Queue the clone, venv, torch and requirements jobs.

        The jobs share a group, so a failing step cancels the next ones.
        """
        install_location = Path(install_location)
        torch_version = torch_version or self.recommended_torch_version()
        version = version or self.get_latest_version()
        group = str(install_location)
        venv_dir = install_location / VENV_DIR_NAME
        log.info(
            'Installing %s %s (torch %s) into %s',
            self.name,
            version,
            torch_version,
            install_location,
        )

        jobs = [
            queue.install(
                InstallerTools.GIT,
                [self.download_url, version],
                prefix=install_location,
                group=group,
            ),
            queue.install(
                InstallerTools.VENV, [], prefix=venv_dir, group=group
            ),
        ]
        jobs.extend(
            self._dependency_jobs(queue, install_location, torch_version)
        )
        return jobs

    def update(
        self,
        queue: InstallerQueue,
        install_location: str | Path,
        version: str,
        torch_version: TorchVersion | None = None,
        *,
        branch: bool = False,
    ) -> list[JobId]:
        """Queue fetch, checkout and requirement jobs moving to `version`."""
        install_location = Path(install_location)
        torch_version = torch_version or self.recommended_torch_version()
        group = str(install_location)
        jobs = [
            queue.upgrade(
                InstallerTools.GIT, [], prefix=install_location, group=group
            ),
            queue.checkout(
                version,
                prefix=install_location,
                start_point=f'origin/{version}' if branch else None,
                group=group,
            ),
        ]
        jobs.extend(
            self._dependency_jobs(queue, install_location, torch_version)
        )
        return jobs

    def _dependency_jobs(
        self,
        queue: InstallerQueue,
        install_location: Path,
        torch_version: TorchVersion,
    ) -> list[JobId]:
        group = str(install_location)
        venv_dir = install_location / VENV_DIR_NAME
        pkgs, origins = self.torch_install(torch_version)
        jobs = [
            queue.install(
                InstallerTools.PYPI,
                pkgs,
                prefix=venv_dir,
                origins=origins,
                group=group,
            )
        ]
        if self.xformers_package and torch_version == TorchVersion.CUDA:
            jobs.append(
                queue.install(
                    InstallerTools.PYPI,
                    [self.xformers_package],
                    prefix=venv_dir,
                    origins=origins,
                    group=group,
                )
            )
        jobs.append(
            queue.install(
                InstallerTools.PYPI,
                [],
                prefix=venv_dir,
                requirements=install_location / self.requirements_file,
                excludes=self.excluded_requirements,
                group=group,
            )
        )
        return jobs
