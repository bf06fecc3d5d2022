"""
Core package init for Interaction Tracker.

Makes the `interaction` modules importable without requiring an editable install.
"""

__all__ = [
    "attribution",
    "config",
    "detectors",
    "errors",
    "io_utils",
    "pipeline",
    "recognition",
    "sampling",
    "storage",
    "types",
]
