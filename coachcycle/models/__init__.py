"""Program entity graph and ordering rules."""
from coachcycle.models.program import (
    CatalogExercise,
    Day,
    EntityModel,
    Exercise,
    Microcycle,
    Phase,
    Program,
    TrainingDay,
    TrainingSet,
)
from coachcycle.models.tree import ProgramTree, ordered_microcycles, posterior_microcycles, sequence_position

__all__ = [
    "CatalogExercise",
    "Day",
    "EntityModel",
    "Exercise",
    "Microcycle",
    "Phase",
    "Program",
    "TrainingDay",
    "TrainingSet",
    "ProgramTree",
    "ordered_microcycles",
    "posterior_microcycles",
    "sequence_position",
]
