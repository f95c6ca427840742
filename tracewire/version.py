"""Version information for tracewire."""

SDK_VERSION = "0.1.0"
INSTRUMENTATION_SCOPE_NAME = "tracewire"
