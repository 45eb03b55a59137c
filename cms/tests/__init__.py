"""
CMS Test Package.

Service tests for slot allocation, propagation, campaign moderation,
terminals and the change feed, plus API tests through the Flask test client.
"""
