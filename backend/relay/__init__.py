"""PeerLink relay backend.

Ephemeral one-shot file relay: upload a file, receive a numeric code, and
let whoever holds the code download it exactly once before it is deleted.
"""
__version__ = "0.1.0"
