"""
BookLore Watch
==============

Library path monitoring for a self-hosted book server.

Features:
- Registers every directory of a library tree for change monitoring
- Debounced, per-library filesystem events fed to a worker pool
- Drain barrier to wait until pending events for paths or libraries are done
"""

__version__ = "0.1.0"
