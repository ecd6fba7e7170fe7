"""Review Engine.

Assign anonymous peer reviews with max-flow matching, infer ground truth
from teacher tests and peer counter-examples, and score reviewers and
authors.
"""

from review_engine.pipeline import ReviewPipeline, create_pipeline

__version__ = "0.3.0"
__all__ = [
    "ReviewPipeline",
    "__version__",
    "create_pipeline",
]
