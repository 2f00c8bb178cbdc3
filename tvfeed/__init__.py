"""Real-time quote feed client."""
