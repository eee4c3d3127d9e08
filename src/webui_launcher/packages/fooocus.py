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


class Fooocus(BaseGitPackage):
    name = 'Fooocus'
    display_name = 'Fooocus'
    author = 'lllyasviel'
    blurb = (
        'Fooocus is a rethinking of Stable Diffusion and Midjourney\'s designs'
    )
    license_type = 'GPL-3.0'
    license_url = 'https://github.com/lllyasviel/Fooocus/blob/main/LICENSE'
    launch_command = 'launch.py'
    preview_image_url = (
        'https://user-images.githubusercontent.com/19834515/'
        '261830306-f79c5981-cf80-4ee3-b06b-3fef3f8bfbc7.png'
    )
    main_branch = 'main'
    should_ignore_releases = True
    requirements_file = 'requirements_versions.txt'
    output_folder_name = 'outputs'
    available_torch_versions = (
        TorchVersion.CPU,
        TorchVersion.CUDA,
        TorchVersion.DIRECTML,
        TorchVersion.ROCM,
    )
    torch_index = {
        TorchVersion.CUDA: 'cu121',
        TorchVersion.ROCM: 'rocm5.4.2',
        TorchVersion.CPU: 'cpu',
    }
    torch_packages = ('torch==2.1.0', 'torchvision==0.16.0')
    xformers_package = 'xformers==0.0.22.post4'

    @property
    def launch_options(self) -> list[LaunchOptionDefinition]:
        return [
            LaunchOptionDefinition(
                'Preset', options=('--preset anime', '--preset realistic')
            ),
            LaunchOptionDefinition(
                'Port',
                LaunchOptionType.STRING,
                description='Sets the listen port',
                options=('--port',),
            ),
            LaunchOptionDefinition(
                'Share',
                description='Set whether to share on Gradio',
                options=('--share',),
            ),
            LaunchOptionDefinition(
                'Listen',
                LaunchOptionType.STRING,
                description='Set the listen interface',
                options=('--listen',),
            ),
            LaunchOptionDefinition(
                'Output Directory',
                LaunchOptionType.STRING,
                description='Override the output directory',
                options=('--output-directory',),
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
                'Use DirectML',
                description='Use pytorch with DirectML support',
                initial_value=hardware.prefer_directml(),
                options=('--directml',),
            ),
            LaunchOptionDefinition(
                'Disable Xformers',
                initial_value=not hardware.has_nvidia_gpu(),
                options=('--disable-xformers',),
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
        return {SharedOutputType.TEXT2IMG: ('outputs',)}

    def handle_console_line(self, line: str) -> bool:
        if 'use the app with' not in line.lower():
            return False
        url = find_web_url(line)
        if url is not None:
            self.web_url = url
        return True
