"""Redis Lua scripts for the sliding window counter.

Running the whole check in one script keeps increment and check atomic
across concurrent requests and application instances.
"""

# Sliding window log over a sorted set, scored by request time in ms.
# KEYS[1]: counter key
# ARGV[1]: limit, ARGV[2]: window in ms, ARGV[3]: now in ms, ARGV[4]: member
# Returns {allowed (0|1), remaining, reset_ms}
SLIDING_WINDOW_SCRIPT = """
    local key = KEYS[1]
    local limit = tonumber(ARGV[1])
    local window_ms = tonumber(ARGV[2])
    local now_ms = tonumber(ARGV[3])
    local member = ARGV[4]

    -- Drop requests that left the window
    redis.call('ZREMRANGEBYSCORE', key, '-inf', now_ms - window_ms)

    local count = redis.call('ZCARD', key)
    local allowed = 0
    if count < limit then
        redis.call('ZADD', key, now_ms, member)
        count = count + 1
        allowed = 1
    end

    redis.call('PEXPIRE', key, window_ms)

    -- The window frees a slot when its oldest request expires
    local reset_ms = now_ms + window_ms
    local oldest = redis.call('ZRANGE', key, 0, 0, 'WITHSCORES')
    if oldest[2] then
        reset_ms = tonumber(oldest[2]) + window_ms
    end

    local remaining = limit - count
    if remaining < 0 then
        remaining = 0
    end
    return {allowed, remaining, reset_ms}
"""
