import configparser
import os
from typing import TYPE_CHECKING

import pytest

os.environ.setdefault('QT_QPA_PLATFORM', 'offscreen')

from qtpy.QtWidgets import QDialog, QInputDialog, QMessageBox

from webui_launcher import config, github, hardware, qt_package_installer
from webui_launcher.config import Settings
from webui_launcher.hardware import GpuInfo

if TYPE_CHECKING:
    from virtualenv.run import Session


@pytest.fixture(autouse=True)
def _block_message_box(monkeypatch, request):
    def raise_on_call(*_, **__):
        raise RuntimeError('exec_ call')  # pragma: no cover

    monkeypatch.setattr(QMessageBox, 'exec_', raise_on_call)
    monkeypatch.setattr(QMessageBox, 'critical', raise_on_call)
    monkeypatch.setattr(QMessageBox, 'information', raise_on_call)
    monkeypatch.setattr(QMessageBox, 'question', raise_on_call)
    monkeypatch.setattr(QMessageBox, 'warning', raise_on_call)
    monkeypatch.setattr(QInputDialog, 'getText', raise_on_call)
    # QDialogs can be allowed via a marker; only raise if not decorated
    if 'enabledialog' not in request.keywords:
        monkeypatch.setattr(QDialog, 'exec_', raise_on_call)


@pytest.fixture(autouse=True)
def _isolated_config(monkeypatch, tmp_path_factory):
    home = tmp_path_factory.mktemp('launcher-home')
    monkeypatch.setattr(config, 'DEFAULT_CONFIG_PATH', home)
    monkeypatch.setattr(
        config, 'DEFAULT_CONFIG_FILE_PATH', home / 'webui-launcher.ini'
    )
    qt_package_installer.cache_clear()
    github.cache_clear()
    yield
    qt_package_installer.cache_clear()
    github.cache_clear()


@pytest.fixture
def settings(tmp_path) -> Settings:
    settings = Settings(
        configparser.ConfigParser(interpolation=None),
        tmp_path / 'webui-launcher.ini',
    )
    settings.library_dir = tmp_path / 'Data'
    return settings


@pytest.fixture
def gpus(monkeypatch):
    """Replace GPU discovery with the returned list."""
    found: list[GpuInfo] = []
    monkeypatch.setattr(hardware, '_gpu_info', lambda: tuple(found))
    return found


@pytest.fixture
def tmp_virtualenv(tmp_path) -> 'Session':
    virtualenv = pytest.importorskip('virtualenv')

    cmd = [
        str(tmp_path / 'venv'),
        '--no-setuptools',
        '--no-wheel',
        '--activators',
        '',
    ]
    return virtualenv.cli_run(cmd)
