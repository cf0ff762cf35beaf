"""Tav task loop: queued repeatable jobs, requirement gating and rewards."""
