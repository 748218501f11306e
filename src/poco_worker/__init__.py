"""Transcoding worker that reconciles registry tasks into a local queue and executes them."""

__version__ = "0.1.0"
