"""
Ember — Assistive communication backend for people with speech impairments.

Unclear speech → cloud interpretation → disambiguation dialog → confirmed phrase,
with caregiver alerts and smart-home control on the side.
"""

__version__ = "1.0.0"
__author__ = "Ember Team"
