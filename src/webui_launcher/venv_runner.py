import os
import shutil
import sys
from collections.abc import Callable, Iterable, Mapping, Sequence
from logging import getLogger
from pathlib import Path

from packaging.requirements import InvalidRequirement, Requirement

from webui_launcher.models import ProcessOutput
from webui_launcher.utils import normalized_name, run_process

log = getLogger(__name__)

OnOutput = Callable[[ProcessOutput], None] | None


class VenvRunner:
    """A package's virtual environment rooted at `root`."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def __repr__(self) -> str:
        return f'{self.__class__.__name__}({str(self.root)!r})'

    @property
    def bin_dir(self) -> Path:
        if sys.platform == 'win32':
            return self.root / 'Scripts'
        return self.root / 'bin'

    @property
    def python_path(self) -> Path:
        if sys.platform == 'win32':
            return self.bin_dir / 'python.exe'
        return self.bin_dir / 'python3'

    @property
    def pip_path(self) -> Path:
        if sys.platform == 'win32':
            return self.bin_dir / 'pip.exe'
        return self.bin_dir / 'pip3'

    def exists(self) -> bool:
        return self.python_path.is_file()

    def environment(self, base: Mapping[str, str] | None = None) -> dict:
        """Environment variables of an activated venv."""
        env = dict(os.environ if base is None else base)
        env.pop('PYTHONHOME', None)
        env['VIRTUAL_ENV'] = str(self.root)
        env['PYTHONUNBUFFERED'] = '1'
        env['PATH'] = os.pathsep.join([str(self.bin_dir), env.get('PATH', '')])
        return env

    def setup(
        self,
        base_python: str | Path,
        force_recreate: bool = False,
        on_output: OnOutput = None,
    ) -> None:
        """Create the venv with `base_python` unless it already exists."""
        if force_recreate and self.root.exists():
            log.info('Removing venv %s', self.root)
            shutil.rmtree(self.root)
        if self.exists():
            return
        self.root.parent.mkdir(parents=True, exist_ok=True)
        run_process(
            [base_python, *venv_arguments(self.root)],
            on_output,
        )

    def pip_install(
        self, args: str | Sequence[str], on_output: OnOutput = None
    ) -> None:
        if isinstance(args, str):
            args = args.split()
        run_process(
            [self.python_path, '-m', 'pip', 'install', *args],
            on_output,
            env=self.environment(),
        )

    def pip_install_from_requirements(
        self,
        requirements: str | Path,
        on_output: OnOutput = None,
        excludes: Iterable[str] = (),
    ) -> None:
        """Install `requirements`, skipping the projects in `excludes`."""
        requirements = Path(requirements)
        if excludes:
            requirements = filter_requirements(
                requirements, excludes, self.root
            )
        self.pip_install(['-r', str(requirements)], on_output)


def venv_arguments(root: str | Path) -> list[str]:
    """Arguments for a base interpreter to create a venv at `root`."""
    return ['-m', 'virtualenv', '--always-copy', str(root)]


def filter_requirements(
    requirements: str | Path,
    excludes: Iterable[str],
    directory: str | Path | None = None,
) -> Path:
    """Write a copy of `requirements` without the projects in `excludes`.

    Option lines (``-r``, ``--extra-index-url``...) and lines that do not
    parse are kept as they are.
    """
    requirements = Path(requirements)
    excluded = {normalized_name(name) for name in excludes}
    kept = []
    for line in requirements.read_text(encoding='utf-8').splitlines():
        spec = line.split('#', 1)[0].strip()
        if spec and not spec.startswith('-'):
            try:
                name = Requirement(spec).name
            except InvalidRequirement:
                log.debug('Keeping unparsable requirement %r', spec)
            else:
                if normalized_name(name) in excluded:
                    log.info('Excluding %r from %s', spec, requirements.name)
                    continue
        kept.append(line)
    target = Path(directory or requirements.parent) / (
        f'{requirements.stem}-filtered{requirements.suffix}'
    )
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text('\n'.join(kept) + '\n', encoding='utf-8')
    return target
