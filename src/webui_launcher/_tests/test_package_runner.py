import sys

import pytest

from webui_launcher.packages import A3WebUI, ComfyUI
from webui_launcher.qt_package_runner import PackageRunner

A3_SCRIPT = """\
print('Launching Web UI with arguments:', ' '.join(__import__('sys').argv[1:]))
print('Running on local URL:  http://127.0.0.1:7860')
print('Model loaded in 3.1s')
print('To see the GUI go to: http://127.0.0.1:9999')
"""

CARRIAGE_RETURN_SCRIPT = """\
import sys
sys.stdout.buffer.write(b'10%\\r50%\\r100%\\r\\ndone\\n\\xff-tail')
"""

SLEEP_SCRIPT = """\
import time
print('ready', flush=True)
time.sleep(60)
"""


@pytest.fixture
def runner(qtbot):
    runner = PackageRunner()
    yield runner
    if runner.is_running():
        with qtbot.waitSignal(runner.exited, timeout=10_000):
            runner.stop()


def _script(tmp_path, text):
    path = tmp_path / 'launch.py'
    path.write_text(text)
    return path


def test_startup_complete(qtbot, runner, tmp_path):
    _script(tmp_path, A3_SCRIPT)
    package = A3WebUI()
    lines = []
    runner.consoleOutput.connect(lines.append)
    startups = []
    runner.startupComplete.connect(startups.append)

    with qtbot.waitSignal(runner.exited, timeout=30_000) as blocker:
        runner.start(
            package,
            tmp_path,
            package.launch_arguments(tmp_path) + ['--api'],
            python=sys.executable,
        )
        assert runner.is_running()
        assert runner.package is package

    assert blocker.args == [0]
    # reported once, with the address seen before the model was loaded
    assert startups == ['http://127.0.0.1:7860']
    assert runner.web_url == 'http://127.0.0.1:7860'
    assert lines[0] == 'Launching Web UI with arguments: --api'
    assert lines[-1] == 'Venv process exited with code 0'
    assert not runner.is_running()


def test_line_splitting(qtbot, runner, tmp_path):
    _script(tmp_path, CARRIAGE_RETURN_SCRIPT)
    lines = []
    runner.consoleOutput.connect(lines.append)
    with qtbot.waitSignal(runner.exited, timeout=30_000):
        runner.start(
            ComfyUI(),
            tmp_path,
            [str(tmp_path / 'launch.py')],
            python=sys.executable,
        )

    assert lines == [
        '10%',
        '50%',
        '100%',
        'done',
        '�-tail',
        'Venv process exited with code 0',
    ]


def test_stop(qtbot, runner, tmp_path):
    _script(tmp_path, SLEEP_SCRIPT)
    with qtbot.waitSignal(runner.consoleOutput, timeout=30_000):
        runner.start(
            ComfyUI(),
            tmp_path,
            [str(tmp_path / 'launch.py')],
            python=sys.executable,
        )
    with pytest.raises(RuntimeError, match='already running'):
        runner.start(ComfyUI(), tmp_path, [], python=sys.executable)

    with qtbot.waitSignal(runner.exited, timeout=10_000):
        runner.stop()
    assert not runner.is_running()
    # stopping twice is harmless
    runner.stop()


def test_missing_venv(runner, tmp_path):
    with pytest.raises(FileNotFoundError, match='No virtual environment'):
        runner.start(ComfyUI(), tmp_path, ['main.py'])
    assert not runner.is_running()
    assert runner.waitForFinished()


def test_failed_to_start(qtbot, runner, tmp_path):
    lines = []
    runner.consoleOutput.connect(lines.append)
    with qtbot.waitSignal(runner.exited, timeout=10_000) as blocker:
        runner.start(
            ComfyUI(),
            tmp_path,
            ['main.py'],
            python=tmp_path / 'this-python-does-not-exist',
        )
    assert blocker.args == [-1]
    assert lines[0].startswith('Failed to start')
