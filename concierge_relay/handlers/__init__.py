"""
Handlers module for the two sockets of a relayed call.

Key components:
- carrier_handlers: Reacts to carrier frames (start, media, stop and unknown
  events). ``start`` records the call and sends the tenant refinement of the
  session configuration; ``media`` forwards audio upstream; ``stop`` ends the
  call.
- realtime_handlers: Reacts to speech-model frames. Audio deltas are sent back
  to the carrier, transcripts are stored on the call record and function calls
  are executed through the tool executor.

Both modules expose a dispatch table keyed by frame model so the relay bridge
can route a parsed frame with a single lookup.

Usage examples:
```python
from concierge_relay.handlers.carrier_handlers import CARRIER_HANDLERS
from concierge_relay.models.carrier_schemas import parse_carrier_frame

frame = parse_carrier_frame(raw)
await CARRIER_HANDLERS[type(frame)](frame, bridge)
```
"""
