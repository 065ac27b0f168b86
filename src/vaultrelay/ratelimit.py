"""
Rate limiting configuration for the relay API.

Limits are per client address, in one-minute fixed windows:
- global: every /api operation
- write: vault create and message post
- create: vault create
- nuke: nuke_user
- read: message fetch and participant count

Every limit is a shared scope, so POST /api/<operation> and the POST /api
dispatcher count against the same buckets.
"""

import math
import time

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address
from slowapi.wrappers import Limit

# Create limiter instance. Enabled or disabled per app in the lifespan.
limiter = Limiter(key_func=get_remote_address)

# Rate limit configurations
GLOBAL_LIMIT = "300/minute"
WRITE_LIMIT = "60/minute"
CREATE_LIMIT = "10/minute"
NUKE_LIMIT = "3/minute"
READ_LIMIT = "1800/minute"

global_limit = limiter.shared_limit(
    GLOBAL_LIMIT, scope="global", error_message="Too many requests, please slow down."
)
write_limit = limiter.shared_limit(
    WRITE_LIMIT, scope="write", error_message="Too many write requests, please slow down."
)
create_limit = limiter.shared_limit(
    CREATE_LIMIT, scope="create", error_message="Too many vault creation requests."
)
nuke_limit = limiter.shared_limit(
    NUKE_LIMIT, scope="nuke", error_message="Too many nuke requests."
)
read_limit = limiter.shared_limit(
    READ_LIMIT, scope="read", error_message="Too many read requests, please slow down."
)


def retry_after(request: Request, limit: Limit) -> int:
    """Seconds until the client's window for ``limit`` resets."""
    reset_at, _ = limiter.limiter.get_window_stats(
        limit.limit, get_remote_address(request), limit.scope
    )
    return max(0, math.ceil(reset_at - time.time()))


def reset_limiters() -> None:
    """Clear all limiter state (for testing)."""
    limiter.reset()
