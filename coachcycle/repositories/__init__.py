"""Repositories package."""
from coachcycle.repositories.base import CreatedExercise, ProgramBackend
from coachcycle.repositories.backend_repository import HttpProgramBackend

__all__ = [
    "CreatedExercise",
    "ProgramBackend",
    "HttpProgramBackend",
]
