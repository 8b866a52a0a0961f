"""
Monthly reports.

One report per user and calendar month. A report is saved as "wip" until its
owner ships it; shipping requires every text field and at least one tag, and
sends a notification mail once.
"""
