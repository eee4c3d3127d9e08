"""
Command line entry point.

``webui-launcher`` opens the launcher window; the other sub-commands run
the same operations without a window, on a `QCoreApplication`.
"""

import argparse
import logging
import signal
import sys
from collections.abc import Sequence
from pathlib import Path

from qtpy.QtCore import QCoreApplication, QTimer

from webui_launcher import __version__
from webui_launcher.config import Settings
from webui_launcher.library import (
    current_commit,
    launch_cards,
    new_install_location,
    register_install,
    remove_package,
)
from webui_launcher.models import SharedFolderMethod, TorchVersion
from webui_launcher.packages import available_packages, get_package
from webui_launcher.prerequisites import PrerequisiteHelper

log = logging.getLogger(__name__)


def _print_progress(report) -> None:
    if report.is_indeterminate:
        print(report.message)
    else:
        print(f'{report.message} ({report.percentage}%)')


def _print_output(text: str) -> None:
    print(text, end='' if text.endswith('\n') else '\n')


def _core_application() -> QCoreApplication:
    app = QCoreApplication.instance() or QCoreApplication(sys.argv[:1])
    # let the interpreter run now and then so Ctrl+C is handled
    timer = QTimer(app)
    timer.timeout.connect(lambda: None)
    timer.start(200)
    return app


def cmd_gui(args: argparse.Namespace, settings: Settings) -> int:
    from qtpy.QtWidgets import QApplication

    from webui_launcher.qt_launcher_dialog import LauncherDialog

    app = QApplication.instance() or QApplication(sys.argv[:1])
    dialog = LauncherDialog(settings=settings)
    dialog.show()
    return app.exec_()


def cmd_list(args: argparse.Namespace, settings: Settings) -> int:
    for package in available_packages():
        torch = ', '.join(str(v) for v in package.available_torch_versions)
        print(f'{package.name:<24} {package.author:<16} [{torch}]')
        if package.blurb:
            print(f'    {package.blurb}')
    return 0


def cmd_installed(args: argparse.Namespace, settings: Settings) -> int:
    active = settings.active_package_id
    for installed in settings.installed_packages():
        marker = '*' if installed.id == active else ' '
        print(
            f'{marker} {installed.id}  {installed.display_name:<24} '
            f'{installed.display_version:<16} '
            f'{installed.full_path(settings.library_dir)}'
        )
    return 0


def cmd_prerequisites(args: argparse.Namespace, settings: Settings) -> int:
    PrerequisiteHelper(settings).install_all_if_necessary(_print_progress)
    return 0


def cmd_install(args: argparse.Namespace, settings: Settings) -> int:
    from webui_launcher.qt_package_installer import (
        LauncherInstallerQueue,
        PipelineTracker,
    )

    package = get_package(args.name)
    helper = PrerequisiteHelper(settings)
    helper.install_all_if_necessary(_print_progress)

    torch_version = (
        TorchVersion(args.torch) if args.torch else None
    ) or package.recommended_torch_version()
    version = args.version or package.get_latest_version()
    location = (
        Path(args.path).absolute()
        if args.path
        else new_install_location(settings, package)
    )

    app = _core_application()
    queue = LauncherInstallerQueue(parent=app)
    tracker = PipelineTracker(queue, parent=app)
    queue.outputReceived.connect(_print_output)

    def on_finished(group: str, success: bool) -> None:
        if success:
            installed = register_install(
                settings,
                package,
                location,
                version=version,
                torch_version=torch_version,
                shared_folder_method=(
                    SharedFolderMethod(args.shared_folder_method)
                    if args.shared_folder_method
                    else None
                ),
                commit=current_commit(location, helper.git_bin_path),
            )
            print(f'Installed {package.display_name} as {installed.id}')
            app.exit(0)
        else:
            print(f'Installing {package.display_name} failed')
            app.exit(1)

    tracker.pipelineFinished.connect(on_finished)
    jobs = package.install(queue, location, torch_version, version=version)
    tracker.track(str(location), len(jobs))
    signal.signal(signal.SIGINT, lambda *_: queue.cancel_all())
    return app.exec_()


def cmd_uninstall(args: argparse.Namespace, settings: Settings) -> int:
    installed = settings.get_installed_package(args.id)
    remove_package(settings, installed)
    print(f'Removed {installed.display_name}')
    return 0


def cmd_launch(args: argparse.Namespace, settings: Settings) -> int:
    from webui_launcher.qt_package_runner import PackageRunner

    if args.id:
        installed = settings.get_installed_package(args.id)
    elif settings.active_package_id:
        installed = settings.get_installed_package(settings.active_package_id)
    else:
        print('No package installed', file=sys.stderr)
        return 1

    package = get_package(installed.package_name)
    install_path = installed.full_path(settings.library_dir)
    arguments = package.launch_arguments(install_path, launch_cards(installed))
    arguments += args.extra
    PrerequisiteHelper(settings).update_path_extensions()

    app = _core_application()
    runner = PackageRunner(parent=app)
    runner.consoleOutput.connect(print)
    runner.startupComplete.connect(
        lambda url: print(f'{package.display_name} is ready at {url}')
    )
    runner.exited.connect(app.exit)
    runner.start(package, install_path, arguments)
    if not runner.is_running():
        return 1
    signal.signal(signal.SIGINT, lambda *_: runner.stop())
    return app.exec_()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='webui-launcher',
        description='Install and launch Stable Diffusion web UIs.',
    )
    parser.add_argument(
        '--version', action='version', version=f'%(prog)s {__version__}'
    )
    parser.add_argument(
        '-v',
        '--verbose',
        action='count',
        default=0,
        help='More output, repeat for debug messages.',
    )
    parser.set_defaults(func=cmd_gui)
    subparsers = parser.add_subparsers(title='commands')

    sub = subparsers.add_parser('gui', help='Open the launcher window.')
    sub.set_defaults(func=cmd_gui)

    sub = subparsers.add_parser('list', help='List installable packages.')
    sub.set_defaults(func=cmd_list)

    sub = subparsers.add_parser('installed', help='List installed packages.')
    sub.set_defaults(func=cmd_installed)

    sub = subparsers.add_parser(
        'prerequisites', help='Install the runtime, git and pip.'
    )
    sub.set_defaults(func=cmd_prerequisites)

    sub = subparsers.add_parser('install', help='Install a package.')
    sub.add_argument('name', help='Package name, see `list`.')
    sub.add_argument('--version', help='Release tag or branch.')
    sub.add_argument(
        '--torch', choices=[str(v) for v in TorchVersion], help='Torch build.'
    )
    sub.add_argument('--path', help='Install location.')
    sub.add_argument(
        '--shared-folder-method',
        choices=[str(m) for m in SharedFolderMethod],
    )
    sub.set_defaults(func=cmd_install)

    sub = subparsers.add_parser('uninstall', help='Remove a package.')
    sub.add_argument('id', help='Installed package id, see `installed`.')
    sub.set_defaults(func=cmd_uninstall)

    sub = subparsers.add_parser('launch', help='Run an installed package.')
    sub.add_argument(
        'id', nargs='?', help='Installed package id, the active one if unset.'
    )
    sub.add_argument(
        'extra',
        nargs=argparse.REMAINDER,
        help='Extra arguments for the package, after `--`.',
    )
    sub.set_defaults(func=cmd_launch)
    return parser


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse `argv`, passing everything after ``--`` to `launch`."""
    parser = build_parser()
    argv = list(sys.argv[1:] if argv is None else argv)
    extra: list[str] = []
    if '--' in argv:
        index = argv.index('--')
        argv, extra = argv[:index], argv[index + 1 :]
    args = parser.parse_args(argv)
    if extra:
        if getattr(args, 'extra', None) is None:
            parser.error('arguments after -- are only accepted by launch')
        args.extra += extra
    return args


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    level = {0: logging.WARNING, 1: logging.INFO}.get(
        args.verbose, logging.DEBUG
    )
    logging.basicConfig(
        level=level, format='%(asctime)s %(levelname)s %(name)s: %(message)s'
    )

    settings = Settings()
    try:
        return args.func(args, settings)
    except KeyError as e:
        print(e.args[0], file=sys.stderr)
        return 1
    except (OSError, ValueError, RuntimeError) as e:
        log.debug('Command failed', exc_info=True)
        print(f'error: {e}', file=sys.stderr)
        return 1


if __name__ == '__main__':
    sys.exit(main())
