"""Patient-flow application.

Holds the bed and queue ledgers, the append-only event trail, the
coordinator that spans both ledgers, and the HTTP/WebSocket surfaces
staff boards talk to.
"""
