"""Extensions receiving engine lifecycle events."""
