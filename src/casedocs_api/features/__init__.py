"""Feature packages (router, service, repository per feature)."""
