"""Real-time chat fan-out service with expiring messages."""
