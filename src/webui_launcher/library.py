"""
Bookkeeping of the packages installed in the library.

The installer queue only runs processes; these helpers record the outcome
in the settings once a pipeline has succeeded, and remove packages again.
"""

from collections.abc import Iterable
from datetime import datetime
from logging import getLogger
from pathlib import Path

from webui_launcher.config import Settings
from webui_launcher.launch_options import (
    LaunchOptionCard,
    cards_from_saved,
    save_options,
)
from webui_launcher.models import (
    InstalledPackage,
    ProcessError,
    SharedFolderMethod,
    TorchVersion,
)
from webui_launcher.packages import BasePackage, get_package
from webui_launcher.shared_folders import update_links_for_package
from webui_launcher.utils import run_process

log = getLogger(__name__)


def _now() -> str:
    return datetime.now().isoformat(timespec='seconds')


def new_install_location(settings: Settings, package: BasePackage) -> Path:
    """A free folder for `package` in the packages directory."""
    location = settings.packages_dir / package.name
    suffix = 2
    while location.exists():
        location = settings.packages_dir / f'{package.name}-{suffix}'
        suffix += 1
    return location


def current_commit(install_path: str | Path, git: str = 'git') -> str:
    """The checked out commit of `install_path`, empty when unknown."""
    try:
        output = run_process(
            [git, '-C', str(install_path), 'rev-parse', 'HEAD']
        )
    except (OSError, ProcessError) as e:
        log.warning('Could not read the commit of %s: %s', install_path, e)
        return ''
    return output.strip()


def register_install(
    settings: Settings,
    package: BasePackage,
    install_location: str | Path,
    *,
    version: str,
    torch_version: TorchVersion | None = None,
    shared_folder_method: SharedFolderMethod | None = None,
    commit: str = '',
) -> InstalledPackage:
    """Set up the shared folders of a fresh install and record it."""
    install_location = Path(install_location)
    method = shared_folder_method or settings.shared_folder_method
    if method not in package.available_shared_folder_methods:
        method = package.recommended_shared_folder_method
    update_links_for_package(
        package, install_location, settings.models_dir, method
    )

    try:
        library_path = install_location.relative_to(settings.library_dir)
    except ValueError:
        library_path = install_location
    installed = InstalledPackage(
        package_name=package.name,
        display_name=package.display_name,
        library_path=library_path.as_posix(),
        version=version,
        commit=commit,
        torch_version=torch_version,
        shared_folder_method=method,
        launch_options=save_options(cards_from_saved(package.launch_options)),
        last_update_check=_now(),
    )
    settings.add_installed_package(installed)
    log.info('Registered %s as %s', package.name, installed.id)
    return installed


def register_update(
    settings: Settings,
    installed: InstalledPackage,
    version: str,
    commit: str = '',
) -> InstalledPackage:
    """Record a successful update and refresh the shared folder links."""
    package = get_package(installed.package_name)
    update_links_for_package(
        package,
        installed.full_path(settings.library_dir),
        settings.models_dir,
        installed.shared_folder_method,
    )
    installed.version = version
    installed.commit = commit
    installed.last_update_check = _now()
    settings.update_installed_package(installed)
    return installed


def remove_package(settings: Settings, installed: InstalledPackage) -> None:
    """Delete an installed package from disk and from the settings."""
    package = get_package(installed.package_name)
    package.uninstall(installed.full_path(settings.library_dir))
    settings.remove_installed_package(installed.id)
    log.info('Removed %s (%s)', installed.display_name, installed.id)


def launch_cards(
    installed: InstalledPackage,
) -> list[LaunchOptionCard]:
    """The launch option cards of `installed` with its saved values."""
    package = get_package(installed.package_name)
    return cards_from_saved(package.launch_options, installed.launch_options)


def save_launch_options(
    settings: Settings,
    installed: InstalledPackage,
    cards: Iterable[LaunchOptionCard],
) -> None:
    installed.launch_options = save_options(cards)
    settings.update_installed_package(installed)
