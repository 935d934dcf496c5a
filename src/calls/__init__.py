"""Call-session protocol core.

Carrier -> /connect WebSocket -> codec -> state machine -> session store / audio sink.
Nothing in this package depends on FastAPI except the connection runner.
"""
