"""BlogX realtime messaging service."""
