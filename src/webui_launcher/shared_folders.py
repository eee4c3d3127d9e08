"""
Model folders shared between packages.

Every package keeps its models in its own layout (``models/Lora``,
``models/loras``...). With the ``symlink`` method each of those folders is
replaced by a link to one folder per `SharedFolderType` in the library, so
a model downloaded once is seen by every installed package.
"""

import shutil
from collections.abc import Iterable, Mapping
from logging import getLogger
from pathlib import Path
from typing import TYPE_CHECKING

from webui_launcher.models import SharedFolderMethod, SharedFolderType

if TYPE_CHECKING:
    from webui_launcher.packages.base import BasePackage

log = getLogger(__name__)

SharedFolders = Mapping[SharedFolderType, Iterable[str]]


def setup_shared_model_folders(models_dir: str | Path) -> None:
    """Create one folder per shared folder type."""
    models_dir = Path(models_dir)
    for folder_type in SharedFolderType:
        (models_dir / folder_type.value).mkdir(parents=True, exist_ok=True)


def _backup_path(source: Path) -> Path:
    """First free ``<name>.bak`` or ``<name>.bak-N`` next to `source`."""
    backup = source.with_name(source.name + '.bak')
    index = 1
    while backup.exists() or backup.is_symlink():
        backup = source.with_name(f'{source.name}.bak-{index}')
        index += 1
    return backup


def _drain_into(source: Path, target: Path) -> None:
    """Move the content of `source` into `target`, then remove `source`.

    Entries already present in `target` stay behind in a ``.bak`` copy of
    `source`, numbered when an earlier copy exists.
    """
    target.mkdir(parents=True, exist_ok=True)
    conflicts = False
    for entry in list(source.iterdir()):
        destination = target / entry.name
        if destination.exists():
            log.warning(
                'Not moving %s, %s already exists in the shared folder',
                entry,
                destination,
            )
            conflicts = True
            continue
        shutil.move(str(entry), str(destination))
    if conflicts:
        backup = _backup_path(source)
        log.warning('Keeping the remaining files of %s in %s', source, backup)
        source.rename(backup)
    else:
        source.rmdir()


def setup_links(
    shared_folders: SharedFolders,
    models_dir: str | Path,
    install_dir: str | Path,
) -> None:
    """Link the model folders of a package to the shared folders."""
    models_dir = Path(models_dir)
    install_dir = Path(install_dir)
    for folder_type, relative_paths in shared_folders.items():
        source = models_dir / folder_type.value
        source.mkdir(parents=True, exist_ok=True)
        for relative_path in relative_paths:
            destination = install_dir / relative_path
            if destination.is_symlink():
                if destination.resolve() == source.resolve():
                    continue
                log.info('Replacing stale link %s', destination)
                destination.unlink()
            elif destination.is_dir():
                log.info('Moving %s into %s', destination, source)
                _drain_into(destination, source)
            elif destination.exists():
                raise FileExistsError(
                    f'{destination} exists and is not a directory'
                )
            destination.parent.mkdir(parents=True, exist_ok=True)
            log.debug('Linking %s -> %s', destination, source)
            destination.symlink_to(source, target_is_directory=True)


def remove_links(
    shared_folders: SharedFolders, install_dir: str | Path
) -> None:
    """Replace the links made by `setup_links` by empty folders."""
    install_dir = Path(install_dir)
    for relative_paths in shared_folders.values():
        for relative_path in relative_paths:
            destination = install_dir / relative_path
            if destination.is_symlink():
                log.debug('Unlinking %s', destination)
                destination.unlink()
            destination.mkdir(parents=True, exist_ok=True)


def update_links_for_package(
    package: 'BasePackage',
    install_dir: str | Path,
    models_dir: str | Path,
    method: SharedFolderMethod,
) -> None:
    if method == SharedFolderMethod.SYMLINK:
        setup_links(package.shared_folders, models_dir, install_dir)
    elif method == SharedFolderMethod.NONE:
        remove_links(package.shared_folders, install_dir)
    else:
        raise ValueError(f'Shared folder method {method} not supported!')
