REDIS_USER_KEY = "user:{user_id}" # user id - identity hash (email, name)
REDIS_PORTFOLIO_META_KEY = "portfolio:meta:{portfolio_id}" # portfolio id - owner and publication flag
REDIS_EVENTS_CHANNEL = "realtime:events" # pub/sub channel for out-of-process producers

# **Example `user:{user_id}` hash fields**
# - `user_id` = `{userId}` (optional, the key already carries it)
# - `email` = string
# - `name` = string

# **Example `portfolio:meta:{portfolio_id}` hash fields**
# - `user_id` = owner user id
# - `is_published` = "true" / "false"

# **Relay message on `realtime:events`**
# - JSON `{"event_type": ..., "room_id": ..., "payload": {...}}`
