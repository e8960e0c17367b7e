"""
Calendar view state: date-range shift cache, debouncing and the per-session
data coordinator.
"""
