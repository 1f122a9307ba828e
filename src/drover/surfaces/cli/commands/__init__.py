from .dispatch import register_dispatch_command
from .utils import echo_writer, get_drover_version, raise_exit

__all__ = [
    "echo_writer",
    "get_drover_version",
    "raise_exit",
    "register_dispatch_command",
]
