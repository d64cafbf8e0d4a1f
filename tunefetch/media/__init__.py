"""
Media post-processing: probing, segment trimming, transcoding and tagging.
"""
