"""
User/message store addressed by the save-message handler.
"""

from users.store import UserStore

__all__ = ['UserStore']
