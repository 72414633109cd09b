"""Member administration service: members, membership requests, member numbers."""
