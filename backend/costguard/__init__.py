"""CostGuard recommendation lifecycle engine."""
