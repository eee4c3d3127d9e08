from webui_launcher import hardware
from webui_launcher.launch_options import (
    LaunchOptionDefinition,
    LaunchOptionType,
)
from webui_launcher.models import (
    SharedFolderType,
    SharedOutputType,
    TorchVersion,
)
from webui_launcher.packages.base import BaseGitPackage
from webui_launcher.utils import find_web_url

_VRAM_FLAGS = {
    hardware.MemoryLevel.LOW: '--lowvram',
    hardware.MemoryLevel.MEDIUM: '--normalvram',
}


class ComfyUI(BaseGitPackage):
    name = 'ComfyUI'
    display_name = 'ComfyUI'
    author = 'comfyanonymous'
    blurb = 'A powerful and modular stable diffusion GUI and backend'
    license_type = 'GPL-3.0'
    license_url = (
        'https://github.com/comfyanonymous/ComfyUI/blob/master/LICENSE'
    )
    launch_command = 'main.py'
    preview_image_url = (
        'https://github.com/comfyanonymous/ComfyUI/raw/master/'
        'comfyui_screenshot.png'
    )
    main_branch = 'master'
    should_ignore_releases = True
    output_folder_name = 'output'
    available_torch_versions = (
        TorchVersion.CUDA,
        TorchVersion.ROCM,
        TorchVersion.DIRECTML,
        TorchVersion.CPU,
        TorchVersion.MPS,
    )
    torch_index = {
        TorchVersion.CUDA: 'cu121',
        TorchVersion.ROCM: 'rocm5.6',
        TorchVersion.CPU: 'cpu',
    }
    torch_packages = ('torch', 'torchvision', 'torchaudio')
    xformers_package = 'xformers'

    @property
    def launch_options(self) -> list[LaunchOptionDefinition]:
        return [
            LaunchOptionDefinition(
                'Host',
                LaunchOptionType.STRING,
                default_value='127.0.0.1',
                options=('--listen',),
            ),
            LaunchOptionDefinition(
                'Port',
                LaunchOptionType.STRING,
                default_value='8188',
                options=('--port',),
            ),
            LaunchOptionDefinition(
                'VRAM',
                initial_value=_VRAM_FLAGS.get(hardware.max_memory_level()),
                options=(
                    '--highvram',
                    '--normalvram',
                    '--lowvram',
                    '--novram',
                ),
            ),
            LaunchOptionDefinition(
                'Use CPU only',
                initial_value=(
                    not hardware.has_nvidia_gpu()
                    and not hardware.has_amd_gpu()
                    and not hardware.is_apple_silicon()
                ),
                options=('--cpu',),
            ),
            LaunchOptionDefinition(
                'Use DirectML',
                initial_value=hardware.prefer_directml(),
                options=('--directml',),
            ),
            LaunchOptionDefinition(
                'Disable Xformers',
                initial_value=not hardware.has_nvidia_gpu(),
                options=('--disable-xformers',),
            ),
            LaunchOptionDefinition(
                'Precision',
                options=('--force-fp16', '--fp16-vae', '--bf16-vae'),
            ),
            LaunchOptionDefinition('Auto-Launch', options=('--auto-launch',)),
            LaunchOptionDefinition.EXTRAS,
        ]

    @property
    def shared_folders(self) -> dict[SharedFolderType, tuple[str, ...]]:
        return {
            SharedFolderType.STABLE_DIFFUSION: ('models/checkpoints',),
            SharedFolderType.DIFFUSERS: ('models/diffusers',),
            SharedFolderType.LORA: ('models/loras',),
            SharedFolderType.CLIP: ('models/clip',),
            SharedFolderType.TEXTUAL_INVERSION: ('models/embeddings',),
            SharedFolderType.VAE: ('models/vae',),
            SharedFolderType.APPROX_VAE: ('models/vae_approx',),
            SharedFolderType.CONTROLNET: ('models/controlnet',),
            SharedFolderType.GLIGEN: ('models/gligen',),
            SharedFolderType.ESRGAN: ('models/upscale_models',),
            SharedFolderType.HYPERNETWORK: ('models/hypernetworks',),
        }

    @property
    def shared_output_folders(self) -> dict[SharedOutputType, tuple[str, ...]]:
        return {SharedOutputType.TEXT2IMG: ('output',)}

    def handle_console_line(self, line: str) -> bool:
        if 'to see the gui go to' not in line.lower():
            return False
        url = find_web_url(line)
        if url is not None:
            self.web_url = url
        return True
