"""
Realtime app for WebSocket communication around ride plans.

This app provides:
- The ride plan consumer (live view, draft editing, content, calendar export)
- The ORM-backed document store whose change feeds run over the channel layer
- JWT/Cookie authentication middleware for WebSocket connections

Key Components:
    - store.py: ChannelLayerDocumentStore
    - consumers/: WebSocket consumers
    - middleware.py: JWTOrCookieAuthMiddleware

Usage:
    from realtime.consumers import RidePlanConsumer
    from realtime.store import ChannelLayerDocumentStore
"""
