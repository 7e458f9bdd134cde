"""
Common utilities for the worksheet narrator.

Modules:
- errors: error taxonomy shared by the service and the viewer
- config: injected service / viewer configuration, SSM parameter loading
- envelope: encrypted payload wire format and base64 helpers
- content_api: HTTP client for the content functions with retries
- scheduler: cancellable timers keyed by session generation
"""

__all__ = [
    "config",
    "content_api",
    "envelope",
    "errors",
    "scheduler",
]
