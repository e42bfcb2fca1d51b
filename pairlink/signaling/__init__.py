"""
Signaling for manually exchanged peer-connection session descriptions.

Submodules are imported directly (``pairlink.signaling.codec``,
``pairlink.signaling.session`` ...); the public names are re-exported from
``pairlink``.
"""
