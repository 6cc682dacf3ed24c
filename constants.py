import os

REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT = int(os.getenv("REDIS_PORT", 6379))
REDIS_PASSWORD = os.getenv("REDIS_PASSWORD", None)

JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

# Per-connection outbound queue; pushes beyond this are dropped
OUTBOUND_QUEUE_SIZE = int(os.getenv("OUTBOUND_QUEUE_SIZE", 100))

# Shared secret for the internal POST /events endpoint (empty disables it)
INTERNAL_API_TOKEN = os.getenv("INTERNAL_API_TOKEN", "")

RELAY_ENABLED = os.getenv("RELAY_ENABLED", "false").lower() in ("1", "true", "yes")

# "open" or "owner_or_published"
PORTFOLIO_ROOM_POLICY = os.getenv("PORTFOLIO_ROOM_POLICY", "open")
