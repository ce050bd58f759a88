"""
Service layer for media conversion.

This module contains the reusable pieces of a conversion, independent of the
task registry:
- quality: quality token -> yt-dlp format selector chain
- progress: incremental decoding of the converter's progress output
- orchestrator: spawning and supervising the converter process
- artifacts / probe: output naming, stale artifact cleanup, metadata lookup

They are driven by the background units in conversions/tasks.py and by the
management commands.
"""
