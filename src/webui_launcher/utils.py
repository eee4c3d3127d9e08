import os
import platform
import re
import subprocess
import sys
from collections.abc import Callable, Mapping, Sequence
from functools import lru_cache
from logging import getLogger
from pathlib import Path
from urllib.request import Request, urlopen

from webui_launcher.models import ProcessError, ProcessOutput, ProgressReport

log = getLogger(__name__)

WEB_URL_RE = re.compile(r'(https?://)([^:\s/]+):(\d+)')

EXE_SUFFIX = '.exe' if sys.platform == 'win32' else ''

DOWNLOAD_CHUNK_SIZE = 1024 * 256


@lru_cache
def user_agent() -> str:
    """Return a user agent string for use in http requests."""
    from webui_launcher import __version__

    parts = [
        ('webui-launcher', __version__),
        (platform.python_implementation(), platform.python_version()),
        (platform.system(), platform.release()),
    ]
    return ' '.join(f'{k}/{v}' for k, v in parts)


def find_web_url(text: str) -> str | None:
    """Return the first ``scheme://host:port`` address found in `text`."""
    match = WEB_URL_RE.search(text)
    if match is None:
        return None
    return match.group(0)


def normalized_name(name: str) -> str:
    """Normalize a project name as PEP 503 does."""
    return re.sub(r'[-_.]+', '-', name).lower()


def prepend_to_path(*directories: str | Path) -> str:
    """Prepend `directories` to ``PATH`` of this process, skipping dupes."""
    current = os.environ.get('PATH', '').split(os.pathsep)
    new = [str(d) for d in directories if str(d) not in current]
    if new:
        os.environ['PATH'] = os.pathsep.join([*new, *current])
    return os.environ['PATH']


def run_process(
    args: Sequence[str | Path],
    on_output: Callable[[ProcessOutput], None] | None = None,
    *,
    cwd: str | Path | None = None,
    env: Mapping[str, str] | None = None,
) -> str:
    """Run `args` to completion, streaming merged output line by line.

    Returns the full output. Raises `ProcessError` on a non-zero exit code.
    """
    cmd = [str(arg) for arg in args]
    log.debug('Running %s (cwd=%s)', cmd, cwd)
    lines = []
    with subprocess.Popen(
        cmd,
        cwd=cwd,
        env=None if env is None else dict(env),
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        text=True,
        encoding='utf-8',
        errors='replace',
    ) as proc:
        for line in proc.stdout:
            lines.append(line)
            if on_output is not None:
                on_output(ProcessOutput(line.rstrip('\r\n')))
    output = ''.join(lines)
    if proc.returncode != 0:
        raise ProcessError(cmd, proc.returncode, output)
    return output


def download_file(
    url: str,
    destination: str | Path,
    progress: Callable[[ProgressReport], None] | None = None,
) -> Path:
    """Download `url` into `destination`, reporting progress by chunk.

    Data goes to a ``.part`` file that is renamed once complete and removed
    when the download fails.
    """
    destination = Path(destination)
    destination.parent.mkdir(parents=True, exist_ok=True)
    partial = destination.with_name(destination.name + '.part')
    log.info('Downloading %s to %s', url, destination)
    request = Request(url, headers={'User-Agent': user_agent()})
    try:
        with urlopen(request) as resp, open(partial, 'wb') as f_p:
            total = int(resp.headers.get('Content-Length') or 0)
            done = 0
            while chunk := resp.read(DOWNLOAD_CHUNK_SIZE):
                f_p.write(chunk)
                done += len(chunk)
                if progress is not None:
                    if total:
                        progress(
                            ProgressReport(done / total, f'Downloading {url}')
                        )
                    else:
                        progress(
                            ProgressReport(
                                -1, f'Downloading {url}', is_indeterminate=True
                            )
                        )
    except BaseException:
        partial.unlink(missing_ok=True)
        raise
    partial.replace(destination)
    return destination
