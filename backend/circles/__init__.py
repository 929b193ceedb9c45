"""Circles: friend graph, group membership and moderation backend."""
