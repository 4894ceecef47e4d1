"""Core document handling: errors, configuration, validation and expressions."""
