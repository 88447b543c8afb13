"""
Stages of one consciousness tick.

- attend: Pick a focus among the incoming stimuli
- recall: Retrieve memories related to the focus
- evaluate: Let behaviors emerge from state, memories and personality
- write_back: Consolidate, record thoughts and refresh goals
"""

from mind.cognitive.attend import attend
from mind.cognitive.evaluate import evaluate
from mind.cognitive.recall import recall
from mind.cognitive.write_back import write_back

__all__ = [
    "attend",
    "evaluate",
    "recall",
    "write_back",
]
