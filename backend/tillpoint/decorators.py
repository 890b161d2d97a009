# Overview: Request decorators for API routes.

from functools import wraps

from flask import current_app, g, request

ACTOR_HEADER = "X-Actor"
MAX_ACTOR_LENGTH = 128


def require_actor(f):
    """
    Establish who is acting on this request.

    Sets g.actor from the X-Actor header, falling back to DEFAULT_ACTOR.
    The value is recorded on audit rows (undo log, invoice edits, stock
    movements); it is an attribution, not an authentication check.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        actor = (request.headers.get(ACTOR_HEADER) or "").strip()
        if len(actor) > MAX_ACTOR_LENGTH:
            return {"error": f"{ACTOR_HEADER} exceeds max length {MAX_ACTOR_LENGTH}"}, 400
        g.actor = actor or current_app.config["DEFAULT_ACTOR"]
        return f(*args, **kwargs)

    return decorated_function
