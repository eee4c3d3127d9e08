import os
import sys
import threading

import pytest

from webui_launcher.pyrunner import (
    PYTHON_DIR_NAME,
    PyIOStream,
    PyRunner,
    PyVersionInfo,
    python_environment,
)


@pytest.fixture
def runner(tmp_path):
    return PyRunner(tmp_path)


def test_eval(runner):
    assert runner.eval('1 + 2').result(timeout=10) == '3'
    assert runner.eval_value('[1, 2][::-1]').result(timeout=10) == [2, 1]


def test_exec_has_fresh_scope(runner):
    runner.exec('x = 1').result(timeout=10)
    with pytest.raises(NameError):
        runner.eval('x').result(timeout=10)


def test_errors_are_raised_by_the_future(runner):
    with pytest.raises(ZeroDivisionError):
        runner.eval_value('1 / 0').result(timeout=10)


def test_version_info(runner):
    info = runner.get_version_info().result(timeout=10)
    assert isinstance(info, PyVersionInfo)
    assert (info.major, info.minor) == sys.version_info[:2]


def test_lock_timeout(runner):
    holding = threading.Event()
    release = threading.Event()

    def hold():
        holding.set()
        return release.wait(10)

    first = runner.run_in_thread_with_lock(hold)
    assert holding.wait(10)
    try:
        second = runner.run_in_thread_with_lock(lambda: 1, wait_timeout=0.1)
        with pytest.raises(TimeoutError, match='interpreter lock'):
            second.result(timeout=10)
    finally:
        release.set()
    assert first.result(timeout=10) is True
    assert runner.eval("'ok'").result(timeout=10) == 'ok'


def test_output_is_captured_once_initialized(runner, monkeypatch):
    monkeypatch.setenv('PATH', os.environ.get('PATH', ''))
    monkeypatch.setattr(
        PyRunner, 'python_dll_path', runner.python_dir / 'libpython'
    )
    with pytest.raises(FileNotFoundError):
        runner.initialize()
    assert not runner.initialized

    runner.python_dir.mkdir(parents=True)
    (runner.python_dir / 'libpython').touch()
    runner.initialize()
    assert runner.initialized

    received = []
    runner.stdout_stream.connect(received.append)
    runner.exec("print('hello')").result(timeout=10)
    assert runner.stdout_stream.text == 'hello\n'
    assert ''.join(received) == 'hello\n'


def test_io_stream():
    stream = PyIOStream()
    assert stream.writable()
    received = []
    stream.connect(received.append)
    stream.write('a')
    stream.disconnect(received.append)
    stream.write('b')
    assert received == ['a']
    assert stream.text == 'ab'
    stream.clear()
    assert stream.text == ''


def test_paths(runner, tmp_path):
    assert runner.python_dir == tmp_path / 'Assets' / PYTHON_DIR_NAME
    assert runner.get_pip_path.name == 'get-pip.py'
    assert not runner.pip_installed
    assert not runner.virtualenv_installed
    if sys.platform == 'win32':
        assert runner.python_home == runner.python_dir
    else:
        assert runner.python_home == runner.python_dir / 'bin'


def test_setup_pip_without_get_pip(runner):
    with pytest.raises(FileNotFoundError, match='get-pip not found'):
        runner.setup_pip()


def test_python_environment(runner):
    env = python_environment(
        runner, {'PATH': '/usr/bin', 'PYTHONHOME': '/elsewhere'}
    )
    assert 'PYTHONHOME' not in env
    assert env['PATH'].startswith(str(runner.python_home))
