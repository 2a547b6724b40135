"""
save-message handler.

Appends an anonymous message to the addressed user's inbox, provided the user
exists and is accepting messages. Both refusals are permanent errors; whether
they use up the remaining attempts is the worker's decision.
"""

import time

from shared.log import create_logger
from users.store import UserStore
from validation.errors import NotFoundError, PermissionDeniedError

log_trace, log_debug, log_info, log_warn, log_error = create_logger("Messages")


def make_save_message(user_store: UserStore, clock=time.time):
    """Build the save-message handler bound to a user store."""

    def save_message(payload: dict, ctx) -> dict:
        ctx.update_progress(10)
        username = payload['username']
        content = payload['content']

        log_debug(f"Saving message for user {username} (job {ctx.job_id})")
        ctx.update_progress(30)

        user = user_store.get_user(username)
        if user is None:
            raise NotFoundError(f"Failed to save message: User {username} not found")
        if not user['isAcceptingMessages']:
            raise PermissionDeniedError(
                f"Failed to save message: User {username} is not accepting messages"
            )

        user_store.add_message(user['username'], content, created_at=clock())

        ctx.update_progress(100)
        log_info(f"Message saved successfully for user {username}")
        return {'success': True, 'username': username, 'type': 'user_message'}

    return save_message
