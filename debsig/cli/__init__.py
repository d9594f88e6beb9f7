"""
Command line tools for debsig-verify.
"""
