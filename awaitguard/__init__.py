"""
awaitguard: flags Promise-returning TypeScript calls that are neither awaited nor handled.
"""

__version__ = "0.1.0"
