# Capture module

from .browser import (
    BrowserConfig,
    BrowserManager,
    PlaywrightCaptureSurface,
    ReceiptPage,
    get_browser_manager,
)
from .capture import CaptureSurface, CaptureTimeoutError, ReceiptCapturer

__all__ = [
    "BrowserConfig",
    "BrowserManager",
    "PlaywrightCaptureSurface",
    "ReceiptPage",
    "get_browser_manager",
    "CaptureSurface",
    "CaptureTimeoutError",
    "ReceiptCapturer",
]
