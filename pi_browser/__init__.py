"""
Pi Browser - LLM-driven browser control.

Drives Chromium through Playwright, or a connected browser extension, with a
tool-calling agent loop. Many missions can run in parallel across isolated
browser sessions.
"""

__version__ = "0.1.0"
__author__ = "Pi Browser Contributors"
