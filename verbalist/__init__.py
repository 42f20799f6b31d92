"""Top-level package for verbalist."""

from . import capture, config, extractor, models, state, storage, store, tasklist

__all__ = ["capture", "config", "extractor", "models", "state", "storage", "store", "tasklist"]
