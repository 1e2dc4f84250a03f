from .artifact import GenerateArtifactMessage, GenerateArtifactRequest, SignedLink

__all__ = [
    "GenerateArtifactMessage",
    "GenerateArtifactRequest",
    "SignedLink",
]
