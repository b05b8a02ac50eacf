"""
Models module for the wire protocols and in-memory records of the concierge relay.

Key components:
- carrier_schemas: Tagged-union models for the carrier media stream frames
  (start, media, stop, plus an explicit unknown variant) and the outbound
  media envelope.
- realtime_schemas: Models for the speech-model socket: the session
  configuration frames, audio append frames, tool result frames and the
  inbound frame kinds the relay reacts to.
- call_session: Call lifecycle state and the per-call record kept by the
  session registry.
- notification: Dashboard notifications pushed through the notification hub.

Usage examples:
```python
from concierge_relay.models.carrier_schemas import MediaFrame, parse_carrier_frame

frame = parse_carrier_frame('{"event": "media", "media": {"payload": "AAA"}}')
if isinstance(frame, MediaFrame):
    print(frame.media.payload)

from concierge_relay.models.realtime_schemas import build_session_update

await upstream.send_json(build_session_update(voice="alloy").to_wire())
```
"""

from concierge_relay.models.call_session import (
    CallSession,
    CallStatus,
    OutboundCallRequest,
    TranscriptEntry,
)
from concierge_relay.models.carrier_schemas import (
    IncomingCarrierFrame,
    MediaFrame,
    OutboundMediaFrame,
    StartFrame,
    StopFrame,
    UnknownFrame,
    parse_carrier_frame,
)
from concierge_relay.models.notification import Notification, NotificationType
from concierge_relay.models.realtime_schemas import (
    AudioDelta,
    FunctionCallArgumentsDone,
    IncomingRealtimeFrame,
    SessionUpdate,
    ToolDefinition,
    UnknownRealtimeFrame,
    parse_realtime_frame,
)
