"""
CMS package for advertising terminals.
Flask service owning terminals, 13-slot playlists, campaigns and media,
with slot allocation, global/wildcard propagation and a change feed.
"""
