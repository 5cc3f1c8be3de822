"""
lernzeit - adaptive content selection for the lernzeit learning app.

Picks the next exercise template for a learner (session duplicate
prevention, weighted template rotation, adaptive difficulty) and scores
and optimizes generated questions.
"""

__version__ = "0.4.0"
