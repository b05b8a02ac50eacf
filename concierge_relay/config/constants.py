"""
Constants and configuration values used throughout the application.

This module defines the protocol tags, default session settings and room
naming shared by the relay, the registry and the notification hub.
"""

# Logger name used throughout the application
LOGGER_NAME = "concierge_relay"

# Speech-model (upstream) defaults
DEFAULT_REALTIME_URL = "wss://api.openai.com/v1/realtime"
DEFAULT_REALTIME_MODEL = "gpt-4o-realtime-preview-2024-12-17"
DEFAULT_VOICE = "alloy"
DEFAULT_TEMPERATURE = 0.8
DEFAULT_INSTRUCTIONS = (
    "You are a helpful AI assistant. Answer concisely and professionally."
)
DEFAULT_MODALITIES = ["text", "audio"]

# 8kHz mu-law in and out, matching the carrier media stream
AUDIO_FORMAT_G711_ULAW = "g711_ulaw"

# Carrier (downstream) event tags
CARRIER_EVENT_START = "start"
CARRIER_EVENT_MEDIA = "media"
CARRIER_EVENT_STOP = "stop"

# Speech-model (upstream) message types
REALTIME_AUDIO_DELTA = "response.audio.delta"
REALTIME_RESPONSE_DONE = "response.done"
REALTIME_AUDIO_TRANSCRIPT_DONE = "response.audio_transcript.done"
REALTIME_INPUT_TRANSCRIPTION_COMPLETED = (
    "conversation.item.input_audio_transcription.completed"
)
REALTIME_FUNCTION_CALL_DONE = "response.function_call_arguments.done"
REALTIME_ERROR = "error"

# Timeouts (seconds)
DEFAULT_IDLE_TIMEOUT = 60.0
DEFAULT_TOOL_TIMEOUT = 10.0
UPSTREAM_CONNECT_TIMEOUT = 15.0

# Notification hub
USER_ROOM_PREFIX = "user:"
TENANT_ROOM_PREFIX = "tenant:"
NOTIFICATION_EVENT = "notification:new"

# Status sources reported by the session registry
STATUS_SOURCE_LOCAL = "local_log"
STATUS_SOURCE_REMOTE = "twilio_api"
