"""HTTP API surface for the calendar integration."""
