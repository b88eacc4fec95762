"""Redis Lua scripts used by the Redis storage engine.

Running the increment and the expiry in one script keeps them atomic, so a
crash or a dropped connection between the two calls can never leave a
counter without an expiry.
"""

# KEYS[1]: counter key
# ARGV[1]: expiry in milliseconds, applied only when the counter is created
ATOMIC_INCREMENT_SCRIPT = """
    local current = redis.call('INCR', KEYS[1])
    if current == 1 then
        redis.call('PEXPIRE', KEYS[1], ARGV[1])
    end
    return current
"""
