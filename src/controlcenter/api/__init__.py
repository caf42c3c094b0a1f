"""Consumer-side surfaces for controlcenter.

The session view folds controller events into display values; the
server exposes that view and a few commands over HTTP.
"""
