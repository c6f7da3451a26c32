"""
Training module.

Requirements decide who gets which training and when; records track progress,
compliance and renewal. Completing a training can issue a certification and
unlock trainings that list it as a prerequisite.
"""
