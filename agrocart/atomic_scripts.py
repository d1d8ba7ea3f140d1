"""
Lua scripts for atomic server cart operations.

Each cart is a Redis hash of line field -> line JSON. A companion counter key
hands out insertion positions so the cart keeps its display order. Scripts
return a JSON-encoded result table.
"""
import json
from typing import Any, Dict, List, Tuple

# Script to add a line or increment an existing one
ADD_LINE_SCRIPT = """
local cart_key = KEYS[1]
local seq_key = KEYS[2]
local field = ARGV[1]
local line = cjson.decode(ARGV[2])
local quantity = tonumber(ARGV[3])
local max_lines = tonumber(ARGV[4])
local ttl = tonumber(ARGV[5])

local existing = redis.call('HGET', cart_key, field)
local is_new = true
if existing then
    -- Increment, keeping the original price snapshot
    local existing_line = cjson.decode(existing)
    existing_line['quantity'] = (tonumber(existing_line['quantity']) or 0) + quantity
    line = existing_line
    is_new = false
else
    if redis.call('HLEN', cart_key) >= max_lines then
        return cjson.encode({err = 'MAX_LINES_EXCEEDED', max = max_lines})
    end
    line['quantity'] = quantity
    line['position'] = redis.call('INCR', seq_key)
end

redis.call('HSET', cart_key, field, cjson.encode(line))
redis.call('EXPIRE', cart_key, ttl)
redis.call('EXPIRE', seq_key, ttl)

return cjson.encode({ok = true, quantity = line['quantity'], is_new = is_new})
"""

# Script to set a line's quantity, removing it at zero
SET_QUANTITY_SCRIPT = """
local cart_key = KEYS[1]
local field = ARGV[1]
local quantity = tonumber(ARGV[2])
local ttl = tonumber(ARGV[3])

local existing = redis.call('HGET', cart_key, field)
if not existing then
    return cjson.encode({err = 'LINE_NOT_FOUND'})
end

if quantity <= 0 then
    redis.call('HDEL', cart_key, field)
    if redis.call('HLEN', cart_key) == 0 then
        redis.call('DEL', cart_key)
    else
        redis.call('EXPIRE', cart_key, ttl)
    end
    return cjson.encode({ok = true, quantity = 0, removed = true})
end

local line = cjson.decode(existing)
line['quantity'] = quantity
redis.call('HSET', cart_key, field, cjson.encode(line))
redis.call('EXPIRE', cart_key, ttl)
return cjson.encode({ok = true, quantity = quantity, removed = false})
"""

# Script to replace the whole cart (login merge result)
REPLACE_CART_SCRIPT = """
local cart_key = KEYS[1]
local seq_key = KEYS[2]
local ttl = tonumber(ARGV[1])

redis.call('DEL', cart_key, seq_key)

local count = 0
for i = 2, #ARGV, 2 do
    local line = cjson.decode(ARGV[i + 1])
    line['position'] = redis.call('INCR', seq_key)
    redis.call('HSET', cart_key, ARGV[i], cjson.encode(line))
    count = count + 1
end

if count > 0 then
    redis.call('EXPIRE', cart_key, ttl)
    redis.call('EXPIRE', seq_key, ttl)
end

return cjson.encode({ok = true, lines = count})
"""


class AtomicScripts:
    """Runs the cart Lua scripts through the RedisClient wrapper"""

    def __init__(self, redis_wrapper):
        """
        Initialize with RedisClient wrapper (not raw redis.Redis client)
        so every call goes through the wrapper's retry logic
        """
        self.redis_wrapper = redis_wrapper

    def _run(self, script: str, keys: List[str], *args: Any) -> Dict[str, Any]:
        raw = self.redis_wrapper.eval(script, len(keys), *keys, *[str(arg) for arg in args])
        return json.loads(raw) if raw else {}

    def add_line(
        self,
        cart_key: str,
        seq_key: str,
        field: str,
        line_json: str,
        quantity: float,
        max_lines: int,
        ttl: int
    ) -> Dict[str, Any]:
        """Execute add line script"""
        return self._run(ADD_LINE_SCRIPT, [cart_key, seq_key], field, line_json, quantity, max_lines, ttl)

    def set_quantity(self, cart_key: str, field: str, quantity: float, ttl: int) -> Dict[str, Any]:
        """Execute set quantity script"""
        return self._run(SET_QUANTITY_SCRIPT, [cart_key], field, quantity, ttl)

    def replace_cart(
        self,
        cart_key: str,
        seq_key: str,
        lines: List[Tuple[str, str]],
        ttl: int
    ) -> Dict[str, Any]:
        """Execute replace cart script with (field, line_json) pairs"""
        args: List[Any] = [ttl]
        for field, line_json in lines:
            args.extend([field, line_json])
        return self._run(REPLACE_CART_SCRIPT, [cart_key, seq_key], *args)
