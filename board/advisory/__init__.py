"""
Advisory collaborators — estimation calibration, notifications and AI hints.

None of these can block a board mutation: the gate reads cached estimation
profiles, and notification or AI failures degrade to logs and neutral answers.
"""
