"""Data types shared by the installer, the packages and the UI."""

import uuid
from dataclasses import dataclass, field
from enum import StrEnum, auto
from pathlib import Path


class TorchVersion(StrEnum):
    "Torch builds a package can be installed with"

    CUDA = auto()
    ROCM = auto()
    DIRECTML = auto()
    CPU = auto()
    MPS = auto()


class SharedFolderType(StrEnum):
    "Model folders shared between packages, valued by their folder name"

    STABLE_DIFFUSION = 'StableDiffusion'
    LORA = 'Lora'
    LYCORIS = 'LyCORIS'
    ESRGAN = 'ESRGAN'
    REAL_ESRGAN = 'RealESRGAN'
    SWINIR = 'SwinIR'
    TEXTUAL_INVERSION = 'TextualInversion'
    HYPERNETWORK = 'Hypernetwork'
    CONTROLNET = 'ControlNet'
    VAE = 'VAE'
    APPROX_VAE = 'ApproxVAE'
    DEEP_DANBOORU = 'DeepDanbooru'
    KARLO = 'Karlo'
    DIFFUSERS = 'Diffusers'
    CLIP = 'CLIP'
    GLIGEN = 'GLIGEN'


class SharedOutputType(StrEnum):
    TEXT2IMG = 'Text2Img'
    IMG2IMG = 'Img2Img'
    EXTRAS = 'Extras'
    TEXT2IMG_GRIDS = 'Text2ImgGrids'
    IMG2IMG_GRIDS = 'Img2ImgGrids'
    SVD = 'SVD'


class SharedFolderMethod(StrEnum):
    SYMLINK = auto()
    NONE = auto()


@dataclass(frozen=True)
class ProgressReport:
    """Progress of a long running step.

    ``progress`` is a fraction in ``[0, 1]`` or ``-1`` when the step
    cannot tell how far along it is.
    """

    progress: float
    message: str = ''
    is_indeterminate: bool = False

    @property
    def percentage(self) -> int:
        if self.is_indeterminate or self.progress < 0:
            return -1
        return round(min(self.progress, 1.0) * 100)


@dataclass(frozen=True)
class ProcessOutput:
    text: str
    is_stderr: bool = False

    def __str__(self) -> str:
        return self.text


@dataclass(frozen=True)
class PackageVersion:
    tag_name: str
    release_notes_markdown: str = ''
    is_prerelease: bool = False


@dataclass
class InstalledPackage:
    """A package installed in the library, as persisted in the settings."""

    package_name: str
    display_name: str
    library_path: str
    version: str = ''
    commit: str = ''
    torch_version: TorchVersion | None = None
    shared_folder_method: SharedFolderMethod = SharedFolderMethod.SYMLINK
    launch_options: list[dict] = field(default_factory=list)
    last_update_check: str = ''
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def full_path(self, library_dir: str | Path) -> Path:
        path = Path(self.library_path)
        if path.is_absolute():
            return path
        return Path(library_dir) / path

    @property
    def display_version(self) -> str:
        if self.commit:
            return f'{self.version}@{self.commit[:7]}'
        return self.version


class ProcessError(Exception):
    """A blocking subprocess exited with a non-zero code."""

    def __init__(self, args, returncode: int, output: str = '') -> None:
        self.cmd = [str(arg) for arg in args]
        self.returncode = returncode
        self.output = output
        super().__init__(
            f"Command '{' '.join(self.cmd)}' "
            f'returned non-zero exit status {returncode}.'
        )
