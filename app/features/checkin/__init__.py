"""
Check-in (dead man's switch) feature.
"""
