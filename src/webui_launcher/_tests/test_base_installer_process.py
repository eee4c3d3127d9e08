import pytest

from webui_launcher.base_qt_package_installer import (
    AbstractInstallerTool,
    GitInstallerTool,
    InstallerActions,
    PipInstallerTool,
    VenvInstallerTool,
)


def test_not_implemented_methods():
    tool = AbstractInstallerTool('install', ['requests'])
    with pytest.raises(NotImplementedError):
        tool.executable()

    with pytest.raises(NotImplementedError):
        tool.arguments()

    with pytest.raises(NotImplementedError):
        tool.environment()

    with pytest.raises(NotImplementedError):
        tool.base_python()

    with pytest.raises(NotImplementedError):
        tool.available()


def test_pip_arguments(tmp_path):
    requirements = tmp_path / 'requirements.txt'
    requirements.write_text('torch==2.0.1\nnumpy\n')
    tool = PipInstallerTool(
        InstallerActions.INSTALL,
        (),
        prefix=str(tmp_path / 'venv'),
        requirements=str(requirements),
        excludes=('torch',),
    )
    args = tool.arguments()
    assert args[:3] == ['-m', 'pip', 'install']
    filtered = tmp_path / 'venv' / 'requirements-filtered.txt'
    assert args[args.index('-r') + 1] == str(filtered)
    assert filtered.read_text().splitlines() == ['numpy']


def test_pip_arguments_before_requirements_exist(tmp_path):
    requirements = tmp_path / 'requirements.txt'
    tool = PipInstallerTool(
        InstallerActions.INSTALL,
        (),
        prefix=str(tmp_path / 'venv'),
        requirements=str(requirements),
        excludes=('torch',),
    )
    args = tool.arguments()
    assert args[args.index('-r') + 1] == str(requirements)


def test_pip_origins_and_upgrade(tmp_path):
    tool = PipInstallerTool(
        InstallerActions.UPGRADE,
        ('torch',),
        origins=('https://download.pytorch.org/whl/cpu',),
        prefix=str(tmp_path),
    )
    args = tool.arguments()
    assert '--upgrade' in args
    assert args[args.index('--extra-index-url') + 1] == (
        'https://download.pytorch.org/whl/cpu'
    )
    assert args[-1] == 'torch'
    env = tool.environment()
    assert env.value('VIRTUAL_ENV') == str(tmp_path)
    assert not env.contains('PYTHONHOME')


def test_pip_requires_prefix():
    tool = PipInstallerTool(InstallerActions.INSTALL, ('requests',))
    with pytest.raises(ValueError, match='Prefix has not been specified!'):
        tool.executable()


def test_git_arguments(tmp_path):
    prefix = str(tmp_path / 'repo')
    clone = GitInstallerTool(
        InstallerActions.INSTALL,
        ('https://github.com/owner/repo.git', 'v1.0'),
        prefix=prefix,
    )
    assert clone.arguments() == [
        'clone',
        '--progress',
        '--branch',
        'v1.0',
        'https://github.com/owner/repo.git',
        prefix,
    ]

    fetch = GitInstallerTool(InstallerActions.UPGRADE, (), prefix=prefix)
    assert fetch.arguments()[:3] == ['-C', prefix, 'fetch']

    checkout = GitInstallerTool(
        InstallerActions.CHECKOUT, ('v1.1',), prefix=prefix
    )
    assert checkout.arguments() == [
        '-C',
        prefix,
        'checkout',
        '--force',
        'v1.1',
    ]

    branch = GitInstallerTool(
        InstallerActions.CHECKOUT, ('main', 'origin/main'), prefix=prefix
    )
    assert branch.arguments()[-3:] == ['-B', 'main', 'origin/main']

    assert clone.environment().value('GIT_TERMINAL_PROMPT') == '0'

    with pytest.raises(ValueError, match="Action 'uninstall' not supported!"):
        GitInstallerTool(
            InstallerActions.UNINSTALL, (), prefix=prefix
        ).arguments()


def test_venv_arguments(tmp_path):
    tool = VenvInstallerTool(
        InstallerActions.INSTALL, (), prefix=str(tmp_path / 'venv')
    )
    assert tool.arguments() == [
        '-m',
        'virtualenv',
        '--always-copy',
        str(tmp_path / 'venv'),
    ]
    with pytest.raises(ValueError, match='Prefix has not been specified!'):
        VenvInstallerTool(InstallerActions.INSTALL, ()).arguments()
