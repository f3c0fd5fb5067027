REDIS_ROOM_CHANNEL = "codesync:room:{slug}" # room id - pub/sub channel for relayed room events
REDIS_ROOM_PATTERN = "codesync:room:*" # every room channel, used by the relay listener

# **Relay message fields** (JSON)
# - `origin` = instance id of the publishing server, receivers skip their own
# - `room_id` = room the event belongs to
# - `event` = outbound event name, e.g. `code-update`
# - `payload` = outbound event body
# - `sender` = connection id of the originating member
# - `mode` = `exclude_sender` | `include_sender`
