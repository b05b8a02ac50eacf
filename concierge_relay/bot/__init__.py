"""
Bot module for relaying phone calls to a realtime speech model.

This module provides the two pieces that carry a call's audio:

Key components:
- RealtimeClient: Client for one speech-model session over the realtime
  websocket. It connects with a bounded timeout, sends JSON frames and yields
  incoming frames until the socket closes. There is no reconnect; a dropped
  session ends the call.
- RelayBridge: Per-call bridge between the carrier media stream and the
  speech model. It sends the generic session configuration, lets the start
  handler send the tenant refinement, relays audio in both directions,
  executes tool calls and co-terminates both sockets, including after an idle
  timeout.

Usage examples:
```python
from concierge_relay.bot.realtime_api import RealtimeClient
from concierge_relay.bot.relay_bridge import RelayBridge

bridge = RelayBridge(
    downstream=websocket,
    upstream_factory=lambda: RealtimeClient(api_key, model),
    registry=registry,
    tenant_directory=tenant_directory,
    tool_executor=tool_executor,
    idle_timeout=60,
)
await bridge.run()
```
"""
