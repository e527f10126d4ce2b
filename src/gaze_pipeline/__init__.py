"""
Gaze signal pipeline: calibration, filtering, recording and replay.
"""
