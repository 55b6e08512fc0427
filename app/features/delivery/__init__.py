"""
Message composition and delivery feature.
"""
