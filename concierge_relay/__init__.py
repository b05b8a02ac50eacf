"""
Concierge Relay - carrier media stream to realtime speech model bridge

This package hosts the real-time core of a multi-tenant business concierge:
phone calls arrive from the telephony carrier as a websocket media stream and
are relayed to a hosted realtime speech model, configured per tenant. Call
records are kept in memory for status queries, and dashboard clients receive
notifications over a room-scoped websocket hub.

Architecture Overview:
- FastAPI server exposing the carrier media stream, TwiML webhooks, call
  queries and the dashboard notification socket
- One relay bridge per call, with an idle watchdog and co-terminating sockets
- Tenant-specific session configuration sent after the generic one
- Tool calls from the speech model executed via webhooks, API requests or
  in-process handlers

Key Components:
- bot: Speech-model client and the per-call relay bridge
- config: Constants, settings and logging setup
- handlers: Carrier and speech-model frame handlers
- models: Wire protocol models and in-memory records
- services: Session registry, status lookup, tenants, tools, auth and the hub
- websocket_manager: Accepts carrier media streams and tracks active bridges

Getting Started:
1. Set up environment variables:
   - OPENAI_API_KEY: Key for the realtime speech model
   - JWT_SECRET: Secret for dashboard tokens (required in production)
   - TWILIO_ACCOUNT_SID / TWILIO_AUTH_TOKEN: Enable remote status lookups
   - PUBLIC_BASE_URL: Public URL the carrier uses to reach this server

2. Start the server:
   ```bash
   python run.py
   ```

3. Point the carrier number's voice webhook at
   ``https://your-server/api/twilio/webhook/voice``.
"""
