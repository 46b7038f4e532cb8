"""Challenge Engine.

Runs time-boxed creative challenges: lifecycle and participation state
machines, reward calculation, tier progression, recommendations and the
scheduled jobs that move challenges through their windows.

Modules:
    - challenges: Catalog, participation, rewards, recurrence and jobs
    - progression: Tier eligibility and bonus multipliers
    - recommendations: Skill-aware challenge ranking
    - repositories: Store interface, in-memory and SQL implementations
    - infrastructure: Database sessions and the periodic scheduler
"""

__version__ = "1.0.0"
