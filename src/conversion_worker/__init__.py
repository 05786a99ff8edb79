"""Media conversion worker: drains Redis queues, runs ffmpeg, records job status."""

__version__ = "0.1.0"
