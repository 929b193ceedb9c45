"""User reports and the moderation workflow."""
