from functools import lru_cache

from webui_launcher.packages.a3webui import A3WebUI
from webui_launcher.packages.base import BaseGitPackage, BasePackage
from webui_launcher.packages.comfyui import ComfyUI
from webui_launcher.packages.fooocus import Fooocus

PACKAGE_CLASSES: tuple[type[BasePackage], ...] = (A3WebUI, Fooocus, ComfyUI)


@lru_cache
def available_packages() -> tuple[BasePackage, ...]:
    """One instance of every package the launcher can install."""
    return tuple(cls() for cls in PACKAGE_CLASSES)


def get_package(name: str) -> BasePackage:
    """Look up a package by `name`, ignoring case.

    Raises
    ------
    KeyError
        If no package has that name.
    """
    for package in available_packages():
        if package.name.lower() == name.lower():
            return package
    raise KeyError(f'Package {name!r} not found')


__all__ = [
    'A3WebUI',
    'BaseGitPackage',
    'BasePackage',
    'ComfyUI',
    'Fooocus',
    'available_packages',
    'get_package',
]
