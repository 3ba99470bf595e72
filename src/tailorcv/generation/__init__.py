"""Resume tailoring: adapt a base resume to a vacancy and score the match."""

from tailorcv.generation.resume_generator import GenerateOptions, GenerationError, generate_resume_with_llm

__all__ = [
    "GenerateOptions",
    "GenerationError",
    "generate_resume_with_llm",
]
