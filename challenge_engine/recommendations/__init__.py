"""Skill-aware challenge recommendations."""
