"""
Tags shared by monthly reports and articles.

Users create tags implicitly (status "unfixed") by typing them into report and
article forms; operators curate them in the back-office and mark them "fixed".
"""
