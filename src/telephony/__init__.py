"""Call-control protocol layer.

The orchestration core talks to the switch through ``CallControl``; the ARI
implementation issues REST requests over httpx and receives lifecycle events
from the Stasis application websocket.
"""
