"""
Realtime delivery: broadcast adapters, WebSocket fan-out, draft debouncing
and the reactive live view.
"""
