"""
Intent Resolver: chat messages in, confirmed ledger transactions out.

Architecture: Classifier (LLM or rules) → Currency → Event match → Entity
resolution → Slot filling → Confirmation summary
Philosophy:  Let the model guess. Only the directory decides who someone is.
"""

__version__ = "0.1.0"
