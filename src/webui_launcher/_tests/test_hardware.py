import sys

import pytest

from webui_launcher import hardware
from webui_launcher.hardware import GIB, GpuInfo, MemoryLevel
from webui_launcher.models import TorchVersion


def test_parse_nvidia_smi():
    text = 'NVIDIA GeForce RTX 3060, 12288\nNVIDIA T4, [N/A]\n\n'
    assert hardware._parse_nvidia_smi(text) == [
        GpuInfo('NVIDIA GeForce RTX 3060', 12288 * 1024**2),
        GpuInfo('NVIDIA T4', 0),
    ]


def test_parse_wmic():
    text = (
        'Node,AdapterRAM,Name\n'
        'DESKTOP,4293918720,AMD Radeon RX 6600\n'
        'DESKTOP,,Microsoft Basic Display Adapter\n'
    )
    assert hardware._parse_wmic(text) == [
        GpuInfo('AMD Radeon RX 6600', 4293918720),
        GpuInfo('Microsoft Basic Display Adapter', 0),
    ]


def test_parse_lspci():
    text = (
        '00:00.0 Host bridge: Intel Corporation Device 9b61\n'
        '00:02.0 VGA compatible controller: Intel Corporation UHD Graphics\n'
        '01:00.0 3D controller: NVIDIA Corporation TU117M\n'
    )
    assert [gpu.name for gpu in hardware._parse_lspci(text)] == [
        'Intel Corporation UHD Graphics',
        'NVIDIA Corporation TU117M',
    ]


@pytest.mark.parametrize(
    ('memory', 'level'),
    [
        (0, None),
        (1, MemoryLevel.LOW),
        (4 * GIB, MemoryLevel.LOW),
        (6 * GIB, MemoryLevel.MEDIUM),
        (8 * GIB, MemoryLevel.MEDIUM),
        (24 * GIB, MemoryLevel.HIGH),
    ],
)
def test_memory_level(memory, level):
    assert GpuInfo('gpu', memory).memory_level == level


def test_no_gpu(gpus, monkeypatch):
    monkeypatch.setattr(sys, 'platform', 'linux')
    assert not hardware.has_nvidia_gpu()
    assert hardware.max_memory_level() is None
    assert hardware.recommended_torch_version() == TorchVersion.CPU


def test_nvidia_gpu(gpus):
    gpus.append(GpuInfo('NVIDIA GeForce RTX 4090', 24 * GIB))
    assert hardware.has_nvidia_gpu()
    assert hardware.max_memory_level() == MemoryLevel.HIGH
    assert hardware.recommended_torch_version() == TorchVersion.CUDA


def test_gpu_without_known_memory(gpus, monkeypatch):
    monkeypatch.setattr(sys, 'platform', 'linux')
    gpus.extend(
        hardware._parse_lspci(
            '03:00.0 VGA compatible controller: Advanced Micro Devices, '
            'Inc. [AMD/ATI] Navi 21 [Radeon RX 6900 XT]\n'
        )
    )
    assert hardware.has_amd_gpu()
    assert hardware.max_memory_level() is None
    assert hardware.recommended_torch_version() == TorchVersion.ROCM

    gpus.append(GpuInfo('Intel UHD Graphics', 2 * GIB))
    assert hardware.max_memory_level() == MemoryLevel.LOW


@pytest.mark.parametrize(
    ('platform', 'expected'),
    [
        ('linux', TorchVersion.ROCM),
        ('win32', TorchVersion.DIRECTML),
        ('darwin', TorchVersion.CPU),
    ],
)
def test_amd_gpu(gpus, monkeypatch, platform, expected):
    monkeypatch.setattr(sys, 'platform', platform)
    monkeypatch.setattr(hardware.platform, 'machine', lambda: 'x86_64')
    gpus.append(GpuInfo('AMD Radeon RX 6600', 8 * GIB))
    assert hardware.has_amd_gpu()
    assert hardware.recommended_torch_version() == expected


def test_apple_silicon(gpus, monkeypatch):
    monkeypatch.setattr(sys, 'platform', 'darwin')
    monkeypatch.setattr(hardware.platform, 'machine', lambda: 'arm64')
    assert hardware.recommended_torch_version() == TorchVersion.MPS


def test_query_missing_tool():
    assert hardware._query(['this-tool-does-not-exist', '--help']) == ''


def test_gpu_info_never_raises():
    hardware.cache_clear()
    assert isinstance(tuple(hardware.iter_gpu_info()), tuple)
    hardware.cache_clear()
