"""Tier progression: eligibility, bonus multipliers and milestones."""
