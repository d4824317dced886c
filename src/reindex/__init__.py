"""
Resumable, crash-safe, bounded-concurrency search reindexing.
"""

__version__ = "0.1.0"
