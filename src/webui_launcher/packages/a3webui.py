from webui_launcher import hardware
from webui_launcher.launch_options import (
    LaunchOptionDefinition,
    LaunchOptionType,
)
from webui_launcher.models import SharedFolderType, TorchVersion
from webui_launcher.packages.base import BaseGitPackage
from webui_launcher.utils import find_web_url

_VRAM_FLAGS = {
    hardware.MemoryLevel.LOW: '--lowvram',
    hardware.MemoryLevel.MEDIUM: '--medvram',
}


class A3WebUI(BaseGitPackage):
    name = 'stable-diffusion-webui'
    display_name = 'Stable Diffusion WebUI'
    author = 'AUTOMATIC1111'
    blurb = 'A browser interface based on Gradio library for Stable Diffusion'
    license_type = 'AGPL-3.0'
    license_url = (
        'https://github.com/AUTOMATIC1111/stable-diffusion-webui/blob/'
        'master/LICENSE.txt'
    )
    launch_command = 'launch.py'
    preview_image_url = (
        'https://github.com/AUTOMATIC1111/stable-diffusion-webui/raw/'
        'master/screenshot.png'
    )
    main_branch = 'master'
    requirements_file = 'requirements_versions.txt'
    output_folder_name = 'outputs'
    available_torch_versions = (
        TorchVersion.CUDA,
        TorchVersion.ROCM,
        TorchVersion.CPU,
        TorchVersion.MPS,
    )
    torch_packages = ('torch==2.0.1', 'torchvision==0.15.2')
    xformers_package = 'xformers==0.0.20'

    @property
    def launch_options(self) -> list[LaunchOptionDefinition]:
        has_nvidia = hardware.has_nvidia_gpu()
        return [
            LaunchOptionDefinition(
                'Host',
                LaunchOptionType.STRING,
                default_value='localhost',
                options=('--host',),
            ),
            LaunchOptionDefinition(
                'Port',
                LaunchOptionType.STRING,
                default_value='7860',
                options=('--port',),
            ),
            LaunchOptionDefinition(
                'VRAM',
                initial_value=_VRAM_FLAGS.get(hardware.max_memory_level()),
                options=('--lowvram', '--medvram'),
            ),
            LaunchOptionDefinition(
                'Xformers', initial_value=has_nvidia, options=('--xformers',)
            ),
            LaunchOptionDefinition(
                'API', initial_value=True, options=('--api',)
            ),
            LaunchOptionDefinition(
                'Skip Torch CUDA Check',
                initial_value=not has_nvidia,
                options=('--skip-torch-cuda-test',),
            ),
            LaunchOptionDefinition(
                'Skip Python Version Check',
                initial_value=True,
                options=('--skip-python-version-check',),
            ),
            LaunchOptionDefinition.EXTRAS,
        ]

    @property
    def shared_folders(self) -> dict[SharedFolderType, tuple[str, ...]]:
        return {
            SharedFolderType.STABLE_DIFFUSION: ('models/Stable-diffusion',),
            SharedFolderType.ESRGAN: ('models/ESRGAN',),
            SharedFolderType.REAL_ESRGAN: ('models/RealESRGAN',),
            SharedFolderType.SWINIR: ('models/SwinIR',),
            SharedFolderType.LORA: ('models/Lora',),
            SharedFolderType.LYCORIS: ('models/LyCORIS',),
            SharedFolderType.APPROX_VAE: ('models/VAE-approx',),
            SharedFolderType.VAE: ('models/VAE',),
            SharedFolderType.DEEP_DANBOORU: ('models/deepbooru',),
            SharedFolderType.KARLO: ('models/karlo',),
            SharedFolderType.TEXTUAL_INVERSION: ('embeddings',),
            SharedFolderType.HYPERNETWORK: ('models/hypernetworks',),
            SharedFolderType.CONTROLNET: ('models/ControlNet',),
        }

    def handle_console_line(self, line: str) -> bool:
        # the address is printed before the model has finished loading
        lowered = line.lower()
        if 'running on' in lowered:
            url = find_web_url(line)
            if url is not None:
                self.web_url = url
        return 'model loaded' in lowered
