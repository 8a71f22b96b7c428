"""Discord cogs of the office hours bot."""
