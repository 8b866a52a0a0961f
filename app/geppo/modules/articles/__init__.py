"""
Articles: free-form posts with the same wip/shipped lifecycle as monthly reports.
"""
