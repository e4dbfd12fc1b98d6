"""Output of state snapshots."""
