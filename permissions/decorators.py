import inspect
from functools import wraps

from permissions.check import has_permission, load_actor, permissions_enforced
from services.errors import PermissionDenied


def permission_required(module, action, actor_arg="actor_id"):
    """Gate a ledger operation on the acting staff member's permissions.

    The actor is read from the ``actor_arg`` parameter. ``None`` is the
    system actor (bootstrap, scheduled jobs) and is always allowed.
    """

    def decorator(fn):
        sig = inspect.signature(fn)

        @wraps(fn)
        def wrapper(*args, **kwargs):
            if permissions_enforced():
                bound = sig.bind_partial(*args, **kwargs)
                actor_id = bound.arguments.get(actor_arg)
                if actor_id is not None:
                    actor = load_actor(actor_id)
                    if not has_permission(actor, module, action):
                        raise PermissionDenied(
                            f"Staff #{actor_id} lacks {action} permission on {module}",
                            actor_id=actor_id,
                            module=module,
                            action=action,
                        )
            return fn(*args, **kwargs)

        return wrapper

    return decorator
