"""Calendar mirroring: credentials, Google Calendar client, inline mirror and queued outbox."""
