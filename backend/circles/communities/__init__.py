"""Groups, memberships and group posts."""
