from pathlib import Path

import pytest

from webui_launcher import github, hardware
from webui_launcher.base_qt_package_installer import InstallerTools
from webui_launcher.hardware import GIB, GpuInfo
from webui_launcher.launch_options import build_arguments, cards_from_saved
from webui_launcher.models import PackageVersion, TorchVersion
from webui_launcher.packages import (
    A3WebUI,
    BasePackage,
    ComfyUI,
    Fooocus,
    available_packages,
    get_package,
)


class _RecordingQueue:
    """Stand-in for `InstallerQueue` that records the queued jobs."""

    def __init__(self):
        self.jobs = []

    def _add(self, action, tool, pkgs, **kwargs):
        self.jobs.append((action, tool, list(pkgs), kwargs))
        return len(self.jobs)

    def install(self, tool, pkgs, **kwargs):
        return self._add('install', tool, pkgs, **kwargs)

    def upgrade(self, tool, pkgs, **kwargs):
        return self._add('upgrade', tool, pkgs, **kwargs)

    def checkout(self, ref, **kwargs):
        return self._add('checkout', InstallerTools.GIT, [ref], **kwargs)


@pytest.fixture
def releases(monkeypatch):
    versions = [
        PackageVersion('v1.7.0-RC', is_prerelease=True),
        PackageVersion('v1.6.0'),
        PackageVersion('v1.5.2'),
    ]
    monkeypatch.setattr(github, 'get_releases', lambda owner, repo: versions)
    monkeypatch.setattr(
        github,
        'get_branches',
        lambda owner, repo: [PackageVersion('master'), PackageVersion('dev')],
    )
    return versions


def test_registry():
    names = [package.name for package in available_packages()]
    assert names == ['stable-diffusion-webui', 'Fooocus', 'ComfyUI']
    assert isinstance(get_package('comfyui'), ComfyUI)
    assert get_package('ComfyUI') is get_package('comfyui')
    with pytest.raises(KeyError, match="Package 'nope' not found"):
        get_package('nope')


def test_base_package_is_abstract(tmp_path):
    package = BasePackage()
    with pytest.raises(NotImplementedError):
        package.get_latest_version()
    with pytest.raises(NotImplementedError):
        package.get_all_versions()
    with pytest.raises(NotImplementedError):
        package.install(_RecordingQueue(), tmp_path)
    assert package.handle_console_line('at http://127.0.0.1:8000/docs')
    assert package.web_url == 'http://127.0.0.1:8000'


def test_versions(releases):
    package = A3WebUI()
    assert package.github_url == (
        'https://github.com/AUTOMATIC1111/stable-diffusion-webui'
    )
    assert package.get_latest_version() == 'v1.6.0'
    assert [v.tag_name for v in package.get_all_versions()] == [
        'v1.6.0',
        'v1.5.2',
    ]
    assert [v.tag_name for v in package.get_all_versions(False)] == [
        'master',
        'dev',
    ]
    # releases are ignored
    assert ComfyUI().get_latest_version() == 'master'
    assert Fooocus().get_latest_version() == 'main'
    assert [v.tag_name for v in ComfyUI().get_all_versions()] == [
        'master',
        'dev',
    ]


def test_latest_version_without_releases(monkeypatch):
    monkeypatch.setattr(github, 'get_releases', lambda owner, repo: [])
    assert A3WebUI().get_latest_version() == 'master'


def test_install_plan(tmp_path, gpus):
    queue = _RecordingQueue()
    location = tmp_path / 'ComfyUI'
    jobs = ComfyUI().install(queue, location, TorchVersion.CUDA, 'master')
    assert jobs == [1, 2, 3, 4, 5]

    group = str(location)
    assert all(job[3]['group'] == group for job in queue.jobs)
    clone, venv, torch, xformers, requirements = queue.jobs
    assert clone[:3] == (
        'install',
        InstallerTools.GIT,
        ['https://github.com/comfyanonymous/ComfyUI.git', 'master'],
    )
    assert clone[3]['prefix'] == location
    assert venv[1] == InstallerTools.VENV
    assert venv[3]['prefix'] == location / 'venv'
    assert torch[2] == ['torch', 'torchvision', 'torchaudio']
    assert torch[3]['origins'] == ['https://download.pytorch.org/whl/cu121']
    assert xformers[2] == ['xformers']
    assert requirements[2] == []
    assert requirements[3]['requirements'] == location / 'requirements.txt'
    assert 'torch' in requirements[3]['excludes']


def test_install_plan_defaults(tmp_path, gpus, releases, monkeypatch):
    monkeypatch.setattr(hardware, 'is_apple_silicon', lambda: False)
    queue = _RecordingQueue()
    A3WebUI().install(queue, tmp_path)
    clone = queue.jobs[0]
    assert clone[2][1] == 'v1.6.0'
    # no xformers without CUDA
    assert len(queue.jobs) == 4
    assert queue.jobs[2][3]['origins'] == [
        'https://download.pytorch.org/whl/cpu'
    ]
    assert queue.jobs[-1][3]['requirements'] == (
        tmp_path / 'requirements_versions.txt'
    )


def test_update_plan(tmp_path, gpus):
    queue = _RecordingQueue()
    Fooocus().update(queue, tmp_path, 'main', TorchVersion.CPU, branch=True)
    fetch, checkout, *deps = queue.jobs
    assert fetch[:3] == ('upgrade', InstallerTools.GIT, [])
    assert checkout[2] == ['main']
    assert checkout[3]['start_point'] == 'origin/main'
    assert len(deps) == 2

    queue = _RecordingQueue()
    A3WebUI().update(queue, tmp_path, 'v1.6.0', TorchVersion.MPS)
    checkout = queue.jobs[1]
    assert checkout[3]['start_point'] is None
    assert queue.jobs[2][3]['origins'] == []


def test_torch_install():
    assert Fooocus().torch_install(TorchVersion.DIRECTML) == (
        ['torch-directml'],
        [],
    )
    with pytest.raises(ValueError, match='does not support torch mps'):
        Fooocus().torch_install(TorchVersion.MPS)


def test_recommended_torch_version(gpus):
    gpus.append(GpuInfo('NVIDIA GeForce RTX 3060', 12 * GIB))
    assert ComfyUI().recommended_torch_version() == TorchVersion.CUDA


@pytest.mark.parametrize(
    ('package', 'lines', 'url'),
    [
        (
            A3WebUI(),
            [
                'Running on local URL:  http://127.0.0.1:7860',
                'Model loaded in 4.2s',
            ],
            'http://127.0.0.1:7860',
        ),
        (
            Fooocus(),
            [
                'Loading...',
                'App started successful. Use the app with '
                'http://127.0.0.1:7865/ or 127.0.0.1:7865',
            ],
            'http://127.0.0.1:7865',
        ),
        (
            ComfyUI(),
            ['Starting server', 'To see the GUI go to: http://127.0.0.1:8188'],
            'http://127.0.0.1:8188',
        ),
    ],
)
def test_handle_console_line(package, lines, url):
    *before, last = lines
    for line in before:
        assert not package.handle_console_line(line)
    assert package.handle_console_line(last)
    assert package.web_url == url


def test_a3_launch_options(gpus):
    gpus.append(GpuInfo('NVIDIA GeForce GTX 1650', 4 * GIB))
    package = A3WebUI()
    arguments = package.launch_arguments(
        Path('install'), cards_from_saved(package.launch_options)
    )
    assert arguments == [
        str(Path('install') / 'launch.py'),
        '--lowvram',
        '--xformers',
        '--api',
        '--skip-python-version-check',
    ]


def test_launch_options_unknown_gpu_memory(gpus):
    gpus.append(GpuInfo('AMD Radeon RX 6900 XT'))
    for package in (A3WebUI(), Fooocus(), ComfyUI()):
        arguments = package.launch_arguments(
            Path('install'), cards_from_saved(package.launch_options)
        )
        assert '--lowvram' not in arguments
        assert '--medvram' not in arguments


def test_comfyui_launch_options(gpus):
    package = ComfyUI()
    cards = cards_from_saved(
        package.launch_options,
        [
            {'name': '--port', 'value': '8189'},
            {'name': '', 'value': '--preview-method auto'},
        ],
    )
    arguments = build_arguments(cards)
    assert arguments[:2] == ['--port', '8189']
    assert arguments[-2:] == ['--preview-method', 'auto']


@pytest.mark.parametrize('package', available_packages())
def test_shared_folders_do_not_nest(package):
    paths = [
        Path(path)
        for paths in package.shared_folders.values()
        for path in paths
    ]
    for path in paths:
        for other in paths:
            assert path == other or path not in other.parents


def test_uninstall(tmp_path):
    package = ComfyUI()
    install, models = tmp_path / 'ComfyUI', tmp_path / 'Models'
    (install / 'models').mkdir(parents=True)
    package.setup_shared_folders(install, models)
    (models / 'Lora' / 'keep.safetensors').write_text('lora')

    package.uninstall(install)
    assert not install.exists()
    assert (models / 'Lora' / 'keep.safetensors').exists()
    # missing installs are ignored
    package.uninstall(install)
