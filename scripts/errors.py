from pathlib import Path
from typing import Union


class SrcsetError(Exception):
    """Base class for failures that stop or degrade a srcset computation."""


class ContextsError(SrcsetError):
    pass


class NavigationError(SrcsetError):
    def __init__(self, url: str, stage: str, reason: object):
        super().__init__(f"Couldn't load page located at {url} ({stage}): {reason}")
        self.url = url
        self.stage = stage


class MeasurementError(SrcsetError):
    def __init__(self, viewport: int, message: str):
        super().__init__(f"Viewport {viewport}px: {message}")
        self.viewport = viewport


class EmptyDistributionError(SrcsetError):
    pass


class WriteError(SrcsetError):
    def __init__(self, path: Union[str, Path], reason: object):
        super().__init__(f"Couldn't save data to file {path}: {reason}")
        self.path = Path(path)


class BrowserError(SrcsetError):
    def __init__(self, reason: object):
        super().__init__(f"Couldn't start headless Chromium: {reason}")
