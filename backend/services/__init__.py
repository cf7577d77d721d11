"""
Services package - Business logic layer.

This package contains the business logic that is decoupled from the
HTTP/WebSocket layer.

Modules:
    - ride_sync: Ride plan draft/sync sessions, content and timeline
      management, access checks and calendar export
"""
