"""Build contexts, executor and cache warmer options, build preparation, integration helpers and release-note listing for a daemonless container image builder."""

__version__ = "1.13.0"

__all__ = [
    "buildcontext",
    "integration",
    "executor_options",
    "executor",
    "warmer",
    "release_notes",
]