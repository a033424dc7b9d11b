"""lessonplay: narrated, illustrated mini-lessons generated from a topic."""

__version__ = "0.1.0"
