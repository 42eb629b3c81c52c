"""
Station Snapshots workers

- web: HTTP entry point (submit a process, poll its status)
- start_processor: fans a process out into one job per weather station
- image_processor: renders and uploads one station image per job
- runtime: wires the bindings and runs everything in one process
"""

from .image_processor import ImageProcessor
from .start_processor import StartProcessor
from .web import WebWorker

__all__ = ['WebWorker', 'StartProcessor', 'ImageProcessor']
