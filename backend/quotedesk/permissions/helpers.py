# Overview: Utility functions for permission validation.

from .definitions import ACTIONS


def validate_action(action):
    """Check if an action is one of view/create/edit/delete."""
    return action in ACTIONS
