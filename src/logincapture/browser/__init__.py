"""Browser hosting (Playwright) for the login page."""
