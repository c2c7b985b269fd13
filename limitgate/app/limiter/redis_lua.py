"""Redis Lua scripts for atomic admission checks.

The default admission path reads the bucket, decides in Python and writes
the result back, so two instances checking the same key at the same moment
can both admit. These scripts run the same recurrence inside Redis so the
read-modify-write of one key is serialized.

KEYS[1] = fill-level entry, KEYS[2] = timestamp entry
ARGV[1] = capacity, ARGV[2] = rate, ARGV[3] = now (Unix seconds), ARGV[4] = ttl,
ARGV[5] = strict ("1" rejects malformed stored numbers)

Both return {allowed (0/1), remaining as a string}. The remaining value is
returned as a string because Redis truncates Lua numbers to integers.

Numbers are written in the same text form ``format_number`` produces: whole
values as plain integers, others as the shortest ``%g`` rendering that parses
back to the same double. In strict mode a malformed field aborts the script
with a ``CORRUPT <key> <raw>`` error reply and nothing is written.
"""

CORRUPT_REPLY_PREFIX = "CORRUPT"

_HELPERS = """
    local function store(key, value, ttl)
        if ttl > 0 then
            redis.call('SET', key, value, 'EX', ttl)
        else
            redis.call('SET', key, value)
        end
    end

    local function fmt(v)
        if v == math.floor(v) and math.abs(v) < 1e16 then
            return string.format('%d', v)
        end
        for p = 1, 17 do
            local s = string.format('%.' .. p .. 'g', v)
            if tonumber(s) == v then
                return s
            end
        end
        return string.format('%.17g', v)
    end

    -- nil for absent, false for malformed or non-finite
    local function parse(raw)
        if not raw then
            return nil
        end
        local n = tonumber(raw)
        if n == nil or n ~= n or n == math.huge or n == -math.huge then
            return false
        end
        return n
    end

    local capacity = tonumber(ARGV[1])
    local rate = tonumber(ARGV[2])
    local now = tonumber(ARGV[3])
    local ttl = tonumber(ARGV[4])
    local strict = ARGV[5] == '1'

    local raw_level = redis.call('GET', KEYS[1])
    local level = parse(raw_level)
    if level == false then
        if strict then
            return redis.error_reply('CORRUPT ' .. KEYS[1] .. ' ' .. raw_level)
        end
        level = 0
    end

    local raw_time = redis.call('GET', KEYS[2])
    local last = parse(raw_time)
    if last == false then
        if strict then
            return redis.error_reply('CORRUPT ' .. KEYS[2] .. ' ' .. raw_time)
        end
        last = 0
    end
    if last == nil then
        last = now
    end

    local elapsed = math.max(now - last, 0)
"""

# Absent fill level starts empty
LEAKY_BUCKET_ALLOW_SCRIPT = _HELPERS + """
    if level == nil then
        level = 0
    end

    local drained = math.max(level - elapsed * rate, 0)
    if drained >= capacity then
        return {0, '0'}
    end

    local new_level = drained + 1
    store(KEYS[1], fmt(new_level), ttl)
    store(KEYS[2], fmt(now), ttl)
    return {1, fmt(math.max(capacity - new_level, 0))}
"""

# Absent token count starts full
TOKEN_BUCKET_ALLOW_SCRIPT = _HELPERS + """
    if level == nil then
        level = capacity
    end

    local refilled = math.min(capacity, math.max(level, 0) + elapsed * rate)
    if refilled < 1 then
        return {0, '0'}
    end

    local new_tokens = refilled - 1
    store(KEYS[1], fmt(new_tokens), ttl)
    store(KEYS[2], fmt(now), ttl)
    return {1, fmt(new_tokens)}
"""
