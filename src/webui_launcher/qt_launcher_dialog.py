"""
The launcher window.

Installed packages are listed on top with the actions that apply to them;
below, any available package can be installed with a torch build and
version of choice. Installer and package output both go to the console
view at the bottom.
"""

import contextlib
from logging import getLogger
from pathlib import Path
from typing import NamedTuple

from qtpy.QtCore import Qt, Slot
from qtpy.QtGui import QCloseEvent
from qtpy.QtWidgets import (
    QCheckBox,
    QComboBox,
    QDialog,
    QFormLayout,
    QGroupBox,
    QHBoxLayout,
    QLabel,
    QListWidget,
    QListWidgetItem,
    QMessageBox,
    QPushButton,
    QSplitter,
    QTextEdit,
    QVBoxLayout,
    QWidget,
)
from superqt.utils import create_worker, ensure_main_thread

from webui_launcher.base_qt_package_installer import ProcessFinishedData
from webui_launcher.config import Settings
from webui_launcher.library import (
    current_commit,
    launch_cards,
    new_install_location,
    register_install,
    register_update,
    remove_package,
    save_launch_options,
)
from webui_launcher.models import (
    InstalledPackage,
    PackageVersion,
    ProgressReport,
    TorchVersion,
)
from webui_launcher.packages import (
    BaseGitPackage,
    BasePackage,
    available_packages,
    get_package,
)
from webui_launcher.prerequisites import PrerequisiteHelper
from webui_launcher.qt_launch_options_dialog import LaunchOptionsDialog
from webui_launcher.qt_package_installer import (
    LauncherInstallerQueue,
    PipelineTracker,
)
from webui_launcher.qt_package_runner import PackageRunner
from webui_launcher.qt_widgets import WebUrlLabel

log = getLogger(__name__)

DISCLAIMER = (
    'Packages are third-party software downloaded from their own '
    'repositories. Review their licenses before use.'
)


class PendingPipeline(NamedTuple):
    kind: str  # 'install' or 'update'
    package: BasePackage
    location: Path
    version: str
    torch_version: TorchVersion | None
    installed: InstalledPackage | None = None


def update_target(
    package: BaseGitPackage, installed: InstalledPackage
) -> tuple[str, bool]:
    """Version and branch mode an update of `installed` moves to.

    Packages installed from a branch follow that branch, the others move
    to the latest release.
    """
    if package.should_ignore_releases or package.is_branch(installed.version):
        return installed.version or package.main_branch, True
    return package.get_latest_version(), False


class LauncherDialog(QDialog):
    """Install, update and launch web UI packages."""

    INSTALLER_QUEUE_CLASS = LauncherInstallerQueue

    def __init__(
        self,
        parent: QWidget | None = None,
        settings: Settings | None = None,
        check_prerequisites: bool = True,
    ) -> None:
        super().__init__(parent)
        self.settings = settings or Settings()
        self.prerequisites = PrerequisiteHelper(self.settings)
        self.installer = self.INSTALLER_QUEUE_CLASS(parent=self)
        self.pipelines = PipelineTracker(self.installer, self)
        self.runner = PackageRunner(self)
        self.worker = None
        self._versions_worker = None
        self._resolve_worker = None
        self._pending: dict[str, PendingPipeline] = {}

        self.setWindowTitle('WebUI Launcher')
        self._setup_ui()
        self.installer.set_output_widget(self.stdout_text)
        self.installer.started.connect(self._on_installer_start)
        self.installer.processFinished.connect(self._on_process_finished)
        self.installer.allFinished.connect(self._on_installer_all_finished)
        self.pipelines.pipelineFinished.connect(self._on_pipeline_finished)
        self.runner.consoleOutput.connect(self.stdout_text.append)
        self.runner.startupComplete.connect(self._on_startup_complete)
        self.runner.exited.connect(self._on_runner_exited)

        self.refresh()
        self._on_package_changed()
        if self.settings.show_disclaimer:
            self._set_status(DISCLAIMER)
        if check_prerequisites:
            self.check_prerequisites()

    # region - Private methods
    # ------------------------------------------------------------------------
    def _setup_ui(self) -> None:
        self.resize(900, 700)
        vlay_1 = QVBoxLayout(self)
        self.v_splitter = QSplitter(Qt.Orientation.Vertical, self)
        vlay_1.addWidget(self.v_splitter)

        installed = QWidget(self.v_splitter)
        lay = QVBoxLayout(installed)
        lay.setContentsMargins(0, 2, 0, 2)
        self.installed_label = QLabel('Installed Packages')
        lay.addWidget(self.installed_label)
        self.installed_list = QListWidget(installed)
        self.installed_list.currentItemChanged.connect(self._update_buttons)
        lay.addWidget(self.installed_list)

        self.launch_btn = QPushButton('Launch', self)
        self.launch_btn.setObjectName('launch_button')
        self.launch_btn.clicked.connect(self.launch_selected)
        self.stop_btn = QPushButton('Stop', self)
        self.stop_btn.setObjectName('stop_button')
        self.stop_btn.clicked.connect(self.runner.stop)
        self.options_btn = QPushButton('Launch Options', self)
        self.options_btn.clicked.connect(self.edit_launch_options)
        self.update_btn = QPushButton('Update', self)
        self.update_btn.clicked.connect(self.update_selected)
        self.uninstall_btn = QPushButton('Uninstall', self)
        self.uninstall_btn.setObjectName('remove_button')
        self.uninstall_btn.clicked.connect(lambda: self.uninstall_selected())
        self.web_url_label = WebUrlLabel(self)

        actions = QHBoxLayout()
        for button in (
            self.launch_btn,
            self.stop_btn,
            self.options_btn,
            self.update_btn,
            self.uninstall_btn,
        ):
            actions.addWidget(button)
        actions.addStretch()
        actions.addWidget(self.web_url_label)
        lay.addLayout(actions)

        available = QGroupBox('Install a Package', self.v_splitter)
        form = QFormLayout(available)
        self.package_combo = QComboBox(available)
        for package in available_packages():
            self.package_combo.addItem(package.display_name, package.name)
        self.package_combo.currentIndexChanged.connect(
            self._on_package_changed
        )
        self.blurb_label = QLabel(available)
        self.blurb_label.setWordWrap(True)
        self.torch_combo = QComboBox(available)
        self.release_mode_checkbox = QCheckBox('Releases', available)
        self.release_mode_checkbox.setChecked(True)
        self.release_mode_checkbox.toggled.connect(self.fetch_versions)
        self.version_combo = QComboBox(available)
        self.version_combo.setEditable(True)
        self.install_btn = QPushButton('Install', available)
        self.install_btn.setObjectName('install_button')
        self.install_btn.clicked.connect(self.install_selected)

        version_row = QHBoxLayout()
        version_row.addWidget(self.version_combo, 1)
        version_row.addWidget(self.release_mode_checkbox)
        form.addRow('Package', self.package_combo)
        form.addRow(self.blurb_label)
        form.addRow('Torch', self.torch_combo)
        form.addRow('Version', version_row)
        form.addRow(self.install_btn)

        self.stdout_text = QTextEdit(self.v_splitter)
        self.stdout_text.setReadOnly(True)
        self.stdout_text.setObjectName('launcher_console')

        status_bar = QHBoxLayout()
        self.status_label = QLabel(self)
        self.working_indicator = QLabel('working ...', self)
        sp = self.working_indicator.sizePolicy()
        sp.setRetainSizeWhenHidden(True)
        self.working_indicator.setSizePolicy(sp)
        self.working_indicator.hide()
        self.cancel_all_btn = QPushButton('Cancel all actions', self)
        self.cancel_all_btn.setVisible(False)
        self.cancel_all_btn.clicked.connect(self.installer.cancel_all)
        self.close_btn = QPushButton('Close', self)
        self.close_btn.clicked.connect(self.accept)
        status_bar.addWidget(self.status_label, 1)
        status_bar.addWidget(self.working_indicator)
        status_bar.addWidget(self.cancel_all_btn)
        status_bar.addWidget(self.close_btn)
        vlay_1.addLayout(status_bar)

        self.v_splitter.setStretchFactor(0, 2)
        self.v_splitter.setStretchFactor(2, 3)

    def _update_buttons(self, *_) -> None:
        selected = self.selected_installed() is not None
        running = self.runner.is_running()
        busy = self.installer.hasJobs()
        self.launch_btn.setEnabled(selected and not running and not busy)
        self.stop_btn.setEnabled(running)
        self.options_btn.setEnabled(selected)
        self.update_btn.setEnabled(selected and not running and not busy)
        self.uninstall_btn.setEnabled(selected and not running and not busy)
        self.install_btn.setEnabled(not busy)

    def _set_status(self, text: str) -> None:
        log.info(text)
        self.status_label.setText(text)

    def _show_warning(self, text: str) -> None:
        log.warning(text)
        self.status_label.setText(text)
        self.stdout_text.append(text)

    def _on_package_changed(self, *_) -> None:
        package = self.selected_package()
        self.blurb_label.setText(package.blurb)
        self.torch_combo.clear()
        for version in package.available_torch_versions:
            self.torch_combo.addItem(str(version), version)
        recommended = self.torch_combo.findData(
            package.recommended_torch_version()
        )
        self.torch_combo.setCurrentIndex(max(recommended, 0))
        self.release_mode_checkbox.setEnabled(
            not package.should_ignore_releases
        )
        self.fetch_versions()

    def _on_versions(self, versions: list[PackageVersion]) -> None:
        self.version_combo.clear()
        for version in versions:
            self.version_combo.addItem(version.tag_name)
        package = self.selected_package()
        if package.should_ignore_releases or not (
            self.release_mode_checkbox.isChecked()
        ):
            index = self.version_combo.findText(package.main_branch)
            self.version_combo.setCurrentIndex(max(index, 0))

    def _on_worker_error(self, exc: Exception) -> None:
        self._show_warning(f'{type(exc).__name__}: {exc}')

    @ensure_main_thread
    def _on_progress(self, report: ProgressReport) -> None:
        if report.is_indeterminate:
            self._set_status(report.message)
        else:
            self._set_status(f'{report.message} ({report.percentage}%)')

    def _on_prerequisites_done(self) -> None:
        self.working_indicator.hide()
        self._set_status('Ready')

    def _on_installer_start(self) -> None:
        self.cancel_all_btn.setVisible(True)
        self.working_indicator.show()
        self._update_buttons()

    def _on_process_finished(
        self, process_finished_data: ProcessFinishedData
    ) -> None:
        if process_finished_data['exit_code']:
            log.debug('Installer job failed: %s', process_finished_data)

    def _on_installer_all_finished(self, exit_codes: tuple) -> None:
        self.working_indicator.hide()
        self.cancel_all_btn.setVisible(False)
        self._update_buttons()

    @Slot(str, bool)
    def _on_pipeline_finished(self, group: str, success: bool) -> None:
        pending = self._pending.pop(group, None)
        if pending is None:
            return
        name = pending.package.display_name
        if not success:
            self._show_warning(f'{name}: {pending.kind} failed')
            if pending.kind == 'install':
                pending.package.uninstall(pending.location)
            return

        commit = current_commit(
            pending.location, self.prerequisites.git_bin_path
        )
        if pending.kind == 'install':
            installed = register_install(
                self.settings,
                pending.package,
                pending.location,
                version=pending.version,
                torch_version=pending.torch_version,
                commit=commit,
            )
            self.settings.active_package_id = installed.id
            self.settings.save()
        else:
            register_update(
                self.settings, pending.installed, pending.version, commit
            )
        self._set_status(f'{name}: {pending.kind} finished')
        self.refresh()

    def _on_startup_complete(self, url: str) -> None:
        self.web_url_label.set_url(url)
        self._set_status(f'{self.runner.package.display_name} is running')

    def _on_runner_exited(self, exit_code: int) -> None:
        self.web_url_label.set_url('')
        self._set_status(f'Process exited with code {exit_code}')
        self._update_buttons()

    def _track(self, pending: PendingPipeline, jobs: list) -> None:
        group = str(pending.location)
        self._pending[group] = pending
        self.pipelines.track(group, len(jobs))
        self._update_buttons()

    def _queue_install(
        self, package: BasePackage, torch_version: TorchVersion, version: str
    ) -> None:
        location = new_install_location(self.settings, package)
        jobs = package.install(
            self.installer, location, torch_version, version=version
        )
        pending = PendingPipeline(
            'install', package, location, version, torch_version
        )
        self._track(pending, jobs)
        self._set_status(f'Installing {package.display_name}...')

    def _queue_update(
        self, installed: InstalledPackage, target: tuple[str, bool]
    ) -> None:
        version, branch = target
        package = get_package(installed.package_name)
        location = installed.full_path(self.settings.library_dir)
        jobs = package.update(
            self.installer,
            location,
            version,
            installed.torch_version,
            branch=branch,
        )
        pending = PendingPipeline(
            'update',
            package,
            location,
            version,
            installed.torch_version,
            installed,
        )
        self._track(pending, jobs)
        self._set_status(f'Updating {installed.display_name} to {version}...')

    # endregion - Private methods

    # region - Qt overrides
    # ------------------------------------------------------------------------
    def closeEvent(self, event: QCloseEvent) -> None:
        self.runner.stop()
        if self.installer.hasJobs():
            self.installer.cancel_all()
        if self.worker is not None:
            with contextlib.suppress(RuntimeError):
                self.worker.quit()
        super().closeEvent(event)

    # endregion - Qt overrides

    # region - Public methods
    # ------------------------------------------------------------------------
    def selected_package(self) -> BasePackage:
        return get_package(self.package_combo.currentData())

    def selected_installed(self) -> InstalledPackage | None:
        item = self.installed_list.currentItem()
        if item is None:
            return None
        try:
            return self.settings.get_installed_package(
                item.data(Qt.ItemDataRole.UserRole)
            )
        except KeyError:
            return None

    def refresh(self) -> None:
        """Reload the installed packages from the settings."""
        self.installed_list.clear()
        active = self.settings.active_package_id
        for installed in self.settings.installed_packages():
            item = QListWidgetItem(
                f'{installed.display_name} {installed.display_version}'
            )
            item.setData(Qt.ItemDataRole.UserRole, installed.id)
            self.installed_list.addItem(item)
            if installed.id == active:
                self.installed_list.setCurrentItem(item)
        if self.installed_list.currentItem() is None:
            self.installed_list.setCurrentRow(0)
        self._update_buttons()

    def check_prerequisites(self) -> None:
        """Install the runtime, git and pip on a worker thread."""
        self.working_indicator.show()
        self.worker = create_worker(
            self.prerequisites.install_all_if_necessary,
            progress=self._on_progress,
            _connect={
                'finished': self._on_prerequisites_done,
                'errored': self._on_worker_error,
            },
        )

    def fetch_versions(self) -> None:
        """List the versions of the selected package on a worker thread."""
        package = self.selected_package()
        self.version_combo.clear()
        self._versions_worker = create_worker(
            package.get_all_versions,
            self.release_mode_checkbox.isChecked(),
            _connect={
                'returned': self._on_versions,
                'errored': self._on_worker_error,
            },
        )

    def install_selected(self) -> None:
        package = self.selected_package()
        torch_version = TorchVersion(self.torch_combo.currentData())
        version = self.version_combo.currentText().strip()
        if version:
            self._queue_install(package, torch_version, version)
            return
        self._set_status(f'Looking up the latest {package.display_name}...')
        self._resolve_worker = create_worker(
            package.get_latest_version,
            _connect={
                'returned': lambda latest: self._queue_install(
                    package, torch_version, latest
                ),
                'errored': self._on_worker_error,
            },
        )

    def update_selected(self) -> None:
        installed = self.selected_installed()
        if installed is None:
            return
        package = get_package(installed.package_name)
        version = ''
        if self.package_combo.currentData() == package.name:
            version = self.version_combo.currentText().strip()
        if version:
            branch = (
                package.should_ignore_releases
                or not self.release_mode_checkbox.isChecked()
            )
            self._queue_update(installed, (version, branch))
            return
        self._set_status(f'Looking up the latest {package.display_name}...')
        self._resolve_worker = create_worker(
            update_target,
            package,
            installed,
            _connect={
                'returned': lambda target: self._queue_update(
                    installed, target
                ),
                'errored': self._on_worker_error,
            },
        )

    def uninstall_selected(self, confirm: bool = True) -> None:
        installed = self.selected_installed()
        if installed is None:
            return
        if confirm:
            answer = QMessageBox.question(
                self,
                'Uninstall',
                f'Delete {installed.display_name} and its virtual '
                'environment? Shared models are kept.',
            )
            if answer != QMessageBox.StandardButton.Yes:
                return
        self.working_indicator.show()
        self.worker = create_worker(
            remove_package,
            self.settings,
            installed,
            _connect={
                'finished': self.refresh,
                'errored': self._on_worker_error,
            },
        )
        self.worker.finished.connect(self.working_indicator.hide)

    def launch_selected(self) -> None:
        installed = self.selected_installed()
        if installed is None:
            return
        package = get_package(installed.package_name)
        install_path = installed.full_path(self.settings.library_dir)
        args = package.launch_arguments(install_path, launch_cards(installed))
        self.prerequisites.update_path_extensions()
        self.stdout_text.clear()
        try:
            self.runner.start(package, install_path, args)
        except (FileNotFoundError, RuntimeError) as e:
            self._show_warning(str(e))
            return
        self.settings.active_package_id = installed.id
        self.settings.save()
        self._set_status(f'Starting {installed.display_name}...')
        self._update_buttons()

    def edit_launch_options(self) -> None:
        installed = self.selected_installed()
        if installed is None:
            return
        dialog = LaunchOptionsDialog(
            launch_cards(installed),
            parent=self,
            title=f'{installed.display_name} Launch Options',
        )
        if dialog.exec_() == QDialog.DialogCode.Accepted:
            save_launch_options(self.settings, installed, dialog.cards())

    # endregion - Public methods
