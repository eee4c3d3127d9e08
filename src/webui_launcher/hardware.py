"""
GPU discovery used to pick sensible launch options and torch builds.

Discovery shells out to the tools each platform ships with and never
raises: a machine where nothing can be queried simply has no known GPU.
"""

import platform
import shutil
import subprocess
import sys
from collections.abc import Iterator
from dataclasses import dataclass
from enum import IntEnum
from functools import lru_cache
from logging import getLogger

from webui_launcher.models import TorchVersion

log = getLogger(__name__)

GIB = 1024**3
QUERY_TIMEOUT = 5


class MemoryLevel(IntEnum):
    LOW = 0
    MEDIUM = 1
    HIGH = 2


@dataclass(frozen=True)
class GpuInfo:
    name: str
    memory_bytes: int = 0

    @property
    def memory_level(self) -> MemoryLevel | None:
        # lspci and some wmic rows do not report memory
        if self.memory_bytes <= 0:
            return None
        if self.memory_bytes <= 4 * GIB:
            return MemoryLevel.LOW
        if self.memory_bytes <= 8 * GIB:
            return MemoryLevel.MEDIUM
        return MemoryLevel.HIGH

    @property
    def is_nvidia(self) -> bool:
        return 'nvidia' in self.name.lower()

    @property
    def is_amd(self) -> bool:
        name = self.name.lower()
        return 'amd' in name or 'radeon' in name


def _query(args: list[str]) -> str:
    if shutil.which(args[0]) is None:
        return ''
    try:
        proc = subprocess.run(
            args,
            capture_output=True,
            text=True,
            timeout=QUERY_TIMEOUT,
        )
    except (OSError, subprocess.TimeoutExpired):
        log.debug('Could not run %s', args[0], exc_info=True)
        return ''
    if proc.returncode != 0:
        return ''
    return proc.stdout


def _parse_nvidia_smi(text: str) -> list[GpuInfo]:
    """Parse the CSV of ``nvidia-smi --query-gpu=name,memory.total``."""
    gpus = []
    for line in text.splitlines():
        name, _, memory = line.rpartition(',')
        if not name:
            continue
        try:
            memory_mib = int(memory.strip())
        except ValueError:
            memory_mib = 0
        gpus.append(GpuInfo(name.strip(), memory_mib * 1024**2))
    return gpus


def _parse_wmic(text: str) -> list[GpuInfo]:
    """Parse ``wmic path win32_VideoController get AdapterRAM,Name``."""
    gpus = []
    for line in text.splitlines():
        parts = [part.strip() for part in line.split(',')]
        if len(parts) < 3 or parts[1].lower() == 'adapterram':
            continue
        # Node,AdapterRAM,Name
        try:
            memory = int(parts[1])
        except ValueError:
            memory = 0
        gpus.append(GpuInfo(','.join(parts[2:]), memory))
    return gpus


def _parse_lspci(text: str) -> list[GpuInfo]:
    gpus = []
    for line in text.splitlines():
        if 'VGA compatible controller' not in line and (
            '3D controller' not in line
        ):
            continue
        _, _, name = line.partition(': ')
        if name:
            gpus.append(GpuInfo(name.strip()))
    return gpus


@lru_cache
def _gpu_info() -> tuple[GpuInfo, ...]:
    gpus = _parse_nvidia_smi(
        _query(
            [
                'nvidia-smi',
                '--query-gpu=name,memory.total',
                '--format=csv,noheader,nounits',
            ]
        )
    )
    if sys.platform == 'win32':
        others = _parse_wmic(
            _query(
                [
                    'wmic',
                    'path',
                    'win32_VideoController',
                    'get',
                    'AdapterRAM,Name',
                    '/format:csv',
                ]
            )
        )
    elif sys.platform.startswith('linux'):
        others = _parse_lspci(_query(['lspci']))
    else:
        others = []
    # nvidia-smi knows the memory of NVIDIA cards, keep its entries
    if gpus:
        others = [gpu for gpu in others if not gpu.is_nvidia]
    return (*gpus, *others)


def iter_gpu_info() -> Iterator[GpuInfo]:
    yield from _gpu_info()


def cache_clear() -> None:
    _gpu_info.cache_clear()


def has_nvidia_gpu() -> bool:
    return any(gpu.is_nvidia for gpu in iter_gpu_info())


def has_amd_gpu() -> bool:
    return any(gpu.is_amd for gpu in iter_gpu_info())


def is_apple_silicon() -> bool:
    return sys.platform == 'darwin' and platform.machine() == 'arm64'


def prefer_directml() -> bool:
    return sys.platform == 'win32' and has_amd_gpu() and not has_nvidia_gpu()


def prefer_rocm() -> bool:
    return (
        sys.platform.startswith('linux')
        and has_amd_gpu()
        and not has_nvidia_gpu()
    )


def max_memory_level() -> MemoryLevel | None:
    levels = [
        gpu.memory_level
        for gpu in iter_gpu_info()
        if gpu.memory_level is not None
    ]
    return max(levels) if levels else None


def recommended_torch_version() -> TorchVersion:
    if has_nvidia_gpu():
        return TorchVersion.CUDA
    if prefer_rocm():
        return TorchVersion.ROCM
    if prefer_directml():
        return TorchVersion.DIRECTML
    if is_apple_silicon():
        return TorchVersion.MPS
    return TorchVersion.CPU
