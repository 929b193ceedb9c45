"""Friend requests and symmetric friendships."""
