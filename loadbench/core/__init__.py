"""
Core engine components: aggregation, thresholds, dispatch, scheduling and
run control.
"""
