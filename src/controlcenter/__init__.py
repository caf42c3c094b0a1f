"""controlcenter -- Remote camera control client.

This package keeps a persistent line-oriented TCP session to a relay
server, tracks the remote capture device behind it, issues capture
commands, and reassembles the base64 snapshot stream the device sends
back into a decoded image.
"""

__version__ = "0.1.0"
