from dataclasses import dataclass, field
import uuid


@dataclass(frozen=True)
class RequestContext:
    """Who is acting, for which branch, under which request id.

    Built once per request (see ``deps.require_context``) and passed
    explicitly into every service call.
    """
    user_id: str
    branch_id: str
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
