"""NWPANIM - Download GFS forecast fields and turn them into colorized animations."""

from nwpanim.config import DownloadConfig, EncodeConfig, RenderConfig, WorkflowConfig
from nwpanim.downloader import GribDownloader
from nwpanim.encoder import VideoEncoder
from nwpanim.processor import GribProcessor
from nwpanim.ramp import ColorRamp, load_color_ramp
from nwpanim.workflow import Workflow, WorkflowResult

__version__ = "0.1.0"
__all__ = [
    "DownloadConfig",
    "RenderConfig",
    "EncodeConfig",
    "WorkflowConfig",
    "GribDownloader",
    "GribProcessor",
    "VideoEncoder",
    "ColorRamp",
    "load_color_ramp",
    "Workflow",
    "WorkflowResult",
]
