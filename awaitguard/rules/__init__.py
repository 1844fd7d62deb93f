"""
Built-in awaitguard rules.

Each rule module exposes a ``RULES`` list picked up by
``awaitguard.engine.registry.discover_rules``.
"""
