"""Domain objects for targets and their outcomes."""
