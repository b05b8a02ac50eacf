"""
Services module for state, lookups and integrations used by the relay.

Key components:
- session_registry: In-memory call records with a local-then-remote status
  lookup.
- twilio_calls: Call status lookup and outbound call creation over the
  carrier's REST API with httpx, with a mock mode when credentials are absent.
- outbound_calls: Places a call for a tenant and records it in the registry.
- tenant_directory: Tenant profiles and the tenant-specific instruction
  builder used for the second session configuration frame.
- agent_tools: Execution of function calls requested by the speech model
  (built-in tools, webhooks, generic API requests, in-process handlers).
- auth: JWT verification for dashboard sockets and protected HTTP routes.
- notification_hub: Room-scoped fan-out of notifications to dashboard
  websockets, plus the notification service that publishes through it.

Usage examples:
```python
from concierge_relay.services.notification_hub import NotificationHub, NotificationService

hub = NotificationHub(jwt_secret=settings.jwt_secret)
hub.start()
await NotificationService(hub).create_notification(
    user_id="u1", title="New booking", message="Tomorrow at 10:00"
)
```
"""
