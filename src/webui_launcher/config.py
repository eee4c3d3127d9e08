"""Launcher configuration and the registry of installed packages.

Everything lives in a single INI file handled by `configparser`:

* ``[general]`` holds the library location and user preferences.
* Each installed package is a ``[package:<id>]`` section.
"""

import configparser
import json
import os
from logging import getLogger
from pathlib import Path

from webui_launcher.models import (
    InstalledPackage,
    SharedFolderMethod,
    TorchVersion,
)

log = getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(
    os.environ.get('WEBUI_LAUNCHER_HOME', Path.home() / '.webui-launcher')
)
DEFAULT_CONFIG_FILE_PATH = DEFAULT_CONFIG_PATH / 'webui-launcher.ini'
PACKAGE_SECTION_PREFIX = 'package:'


def get_configuration() -> configparser.ConfigParser:
    """
    Get launcher configuration, writing the defaults on first use.

    The initial disclaimer is only shown once:
        * `['general']['show_disclaimer']` -> bool
    """
    DEFAULT_CONFIG_PATH.mkdir(parents=True, exist_ok=True)
    config = configparser.ConfigParser(interpolation=None)

    if DEFAULT_CONFIG_FILE_PATH.exists():
        config.read(DEFAULT_CONFIG_FILE_PATH)
        if config.getboolean('general', 'show_disclaimer', fallback=False):
            config.set('general', 'show_disclaimer', 'False')
            with open(DEFAULT_CONFIG_FILE_PATH, 'w') as configfile:
                config.write(configfile)
    else:
        config['general'] = {
            'show_disclaimer': 'True',
            'library_dir': str(DEFAULT_CONFIG_PATH / 'Data'),
            'shared_folder_method': str(SharedFolderMethod.SYMLINK),
            'active_package': '',
        }
        with open(DEFAULT_CONFIG_FILE_PATH, 'w') as configfile:
            config.write(configfile)

    return config


class Settings:
    """Typed access to the launcher configuration file."""

    def __init__(
        self,
        config: configparser.ConfigParser | None = None,
        path: Path | None = None,
    ) -> None:
        self._path = path or DEFAULT_CONFIG_FILE_PATH
        self._config = config if config is not None else get_configuration()
        if not self._config.has_section('general'):
            self._config.add_section('general')

    # -------------------------- Library layout ------------------------------
    @property
    def library_dir(self) -> Path:
        return Path(
            self._config.get(
                'general',
                'library_dir',
                fallback=str(DEFAULT_CONFIG_PATH / 'Data'),
            )
        ).expanduser()

    @library_dir.setter
    def library_dir(self, value: str | Path) -> None:
        self._config.set('general', 'library_dir', str(value))

    @property
    def packages_dir(self) -> Path:
        return self.library_dir / 'Packages'

    @property
    def models_dir(self) -> Path:
        return self.library_dir / 'Models'

    @property
    def assets_dir(self) -> Path:
        return self.library_dir / 'Assets'

    def ensure_library_dirs(self) -> None:
        for path in (self.packages_dir, self.models_dir, self.assets_dir):
            path.mkdir(parents=True, exist_ok=True)

    # -------------------------- Preferences ---------------------------------
    @property
    def shared_folder_method(self) -> SharedFolderMethod:
        return SharedFolderMethod(
            self._config.get(
                'general',
                'shared_folder_method',
                fallback=str(SharedFolderMethod.SYMLINK),
            )
        )

    @shared_folder_method.setter
    def shared_folder_method(self, value: SharedFolderMethod) -> None:
        self._config.set('general', 'shared_folder_method', str(value))

    @property
    def show_disclaimer(self) -> bool:
        return self._config.getboolean(
            'general', 'show_disclaimer', fallback=False
        )

    @property
    def active_package_id(self) -> str | None:
        value = self._config.get('general', 'active_package', fallback='')
        return value or None

    @active_package_id.setter
    def active_package_id(self, value: str | None) -> None:
        self._config.set('general', 'active_package', value or '')

    # -------------------------- Installed packages --------------------------
    def installed_packages(self) -> list[InstalledPackage]:
        return [
            self._read_package(section)
            for section in self._config.sections()
            if section.startswith(PACKAGE_SECTION_PREFIX)
        ]

    def get_installed_package(self, package_id: str) -> InstalledPackage:
        section = PACKAGE_SECTION_PREFIX + package_id
        if not self._config.has_section(section):
            raise KeyError(f'No installed package with id {package_id}')
        return self._read_package(section)

    def add_installed_package(self, package: InstalledPackage) -> None:
        self._write_package(package)
        if self.active_package_id is None:
            self.active_package_id = package.id
        self.save()

    def update_installed_package(self, package: InstalledPackage) -> None:
        # raises KeyError for unknown packages
        self.get_installed_package(package.id)
        self._write_package(package)
        self.save()

    def remove_installed_package(self, package_id: str) -> None:
        self._config.remove_section(PACKAGE_SECTION_PREFIX + package_id)
        if self.active_package_id == package_id:
            remaining = self.installed_packages()
            self.active_package_id = remaining[0].id if remaining else None
        self.save()

    def save(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with open(self._path, 'w') as configfile:
            self._config.write(configfile)
        log.debug('Saved settings to %s', self._path)

    def _read_package(self, section: str) -> InstalledPackage:
        data = self._config[section]
        torch_version = data.get('torch_version', '')
        return InstalledPackage(
            id=section[len(PACKAGE_SECTION_PREFIX) :],
            package_name=data['package_name'],
            display_name=data.get('display_name', data['package_name']),
            library_path=data['library_path'],
            version=data.get('version', ''),
            commit=data.get('commit', ''),
            torch_version=(
                TorchVersion(torch_version) if torch_version else None
            ),
            shared_folder_method=SharedFolderMethod(
                data.get(
                    'shared_folder_method', str(SharedFolderMethod.SYMLINK)
                )
            ),
            launch_options=json.loads(data.get('launch_options', '[]')),
            last_update_check=data.get('last_update_check', ''),
        )

    def _write_package(self, package: InstalledPackage) -> None:
        self._config[PACKAGE_SECTION_PREFIX + package.id] = {
            'package_name': package.package_name,
            'display_name': package.display_name,
            'library_path': package.library_path,
            'version': package.version,
            'commit': package.commit,
            'torch_version': str(package.torch_version or ''),
            'shared_folder_method': str(package.shared_folder_method),
            'launch_options': json.dumps(package.launch_options),
            'last_update_check': package.last_update_check,
        }
